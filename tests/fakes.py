from taskhub.storage import StoredObject


class FakeStorage:
    """
    In-memory object storage for tests.

    - Records saved and deleted keys for assertions
    - ``fail_on_call`` makes the Nth save (1-based) raise
    - No local paths, so downloads redirect to ``url_for``
    """

    def __init__(self, fail_on_call: int | None = None) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.save_calls = 0
        self.fail_on_call = fail_on_call

    async def save(self, data: bytes, original_name: str, mime_type: str) -> StoredObject:
        self.save_calls += 1
        if self.fail_on_call is not None and self.save_calls == self.fail_on_call:
            raise OSError("storage unavailable")
        key = f"task-management/obj-{self.save_calls}-{original_name}"
        self.objects[key] = data
        return StoredObject(key=key, url=self.url_for(key), filename=key.rsplit("/", 1)[-1])

    async def delete(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)

    def url_for(self, key: str) -> str:
        return f"https://files.test/{key}"

    def local_path(self, key: str) -> None:
        return None
