import json


class FakeResponse:
    """
    Minimal aiohttp response stub usable as `async with session.get(...) as resp`.
    `body` is returned by json(); pass raw_text to simulate an undecodable body.
    """
    def __init__(self, status=200, body=None, raw_text=None):
        self.status = status
        self._body = body
        self._raw = raw_text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type="application/json"):
        if self._raw is not None:
            return json.loads(self._raw)
        return self._body

    async def text(self):
        return self._raw if self._raw is not None else json.dumps(self._body)


class FakeSession:
    """
    Scripted session: each get() consumes the next item, which is either a
    FakeResponse or an exception instance to raise.
    Records requested URLs in `requests` and their keyword args in `request_kwargs`.
    """
    def __init__(self, scripted):
        self.scripted = list(scripted)
        self.requests = []
        self.request_kwargs = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requests.append(url)
        self.request_kwargs.append(kwargs)
        item = self.scripted.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True
