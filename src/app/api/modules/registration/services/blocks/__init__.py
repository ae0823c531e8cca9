from app.api.modules.registration.services.blocks.block_store import (
    LIST_TYPES,
    BlockStore,
)

__all__ = ("LIST_TYPES", "BlockStore")
