"""In-memory stand-in for the parts of the Firestore client the services use"""
import copy
import itertools


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = copy.deepcopy(data)

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)

    def get(self, field):
        return (self._data or {}).get(field)


class FakeDocumentRef:
    def __init__(self, client, collection, doc_id):
        self._client = client
        self._collection = collection
        self.id = doc_id

    @property
    def _docs(self):
        return self._client.data.setdefault(self._collection, {})

    def get(self):
        return FakeSnapshot(self, self._docs.get(self.id))

    def set(self, data, merge=False):
        if merge and self.id in self._docs:
            self._docs[self.id].update(copy.deepcopy(data))
        else:
            self._docs[self.id] = copy.deepcopy(data)

    def update(self, data):
        if self.id not in self._docs:
            raise KeyError(f"No document to update: {self._collection}/{self.id}")
        self._docs[self.id].update(copy.deepcopy(data))

    def delete(self):
        self._docs.pop(self.id, None)


class FakeQuery:
    def __init__(self, client, collection, filters=()):
        self._client = client
        self._collection = collection
        self._filters = list(filters)

    def where(self, field, op, value):
        if op != "==":
            raise NotImplementedError(op)
        return FakeQuery(self._client, self._collection, self._filters + [(field, value)])

    def stream(self):
        docs = self._client.data.get(self._collection, {})
        for doc_id, data in list(docs.items()):
            if all(data.get(field) == value for field, value in self._filters):
                yield FakeSnapshot(FakeDocumentRef(self._client, self._collection, doc_id), data)

    def get(self):
        return list(self.stream())


class FakeCollection(FakeQuery):
    def document(self, doc_id=None):
        if doc_id is None:
            doc_id = f"auto-{next(self._client.ids)}"
        return FakeDocumentRef(self._client, self._collection, doc_id)


class FakeBatch:
    def __init__(self, client):
        self._client = client
        self._ops = []

    def set(self, doc_ref, data, merge=False):
        self._ops.append(lambda: doc_ref.set(data, merge=merge))

    def update(self, doc_ref, data):
        self._ops.append(lambda: doc_ref.update(data))

    def delete(self, doc_ref):
        self._ops.append(doc_ref.delete)

    def commit(self):
        self._client.commits += 1
        if self._client.commits in self._client.failing_commits:
            raise RuntimeError("commit failed")
        for op in self._ops:
            op()


class FakeClient:
    """
    data is {collection: {doc_id: dict}}; failing_commits holds the 1-based
    numbers of batch commits that raise instead of writing.
    """

    def __init__(self, data=None):
        self.data = data if data is not None else {}
        self.ids = itertools.count(1)
        self.commits = 0
        self.failing_commits = set()

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch(self)
