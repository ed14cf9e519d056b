from vibeboard.state.store import BoardStore, JsonBoardStore, MemoryBoardStore, StoreError

__all__ = ["BoardStore", "JsonBoardStore", "MemoryBoardStore", "StoreError"]
