from meridian.storage.result_store import InMemoryResultStore, JsonResultStore, ResultFilter, ResultStore, StoredResult

__all__ = ["InMemoryResultStore", "JsonResultStore", "ResultFilter", "ResultStore", "StoredResult"]
