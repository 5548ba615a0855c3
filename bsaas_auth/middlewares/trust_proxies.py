from starlette.types import ASGIApp, Receive, Scope, Send


class TrustedProxiesMiddleware:
    """Resolve the client address behind a fixed number of trusted proxy hops.

    ``X-Forwarded-For`` reads "client, proxy1, proxy2"; with N trusted hops the
    client sits at index -(N+1). The scope is rewritten so rate-limit keys and
    session metadata see the real client.
    """

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.proxies_count > 0:
            headers = dict(scope.get("headers", []))
            forwarded = headers.get(b"x-forwarded-for", b"").decode("latin-1")
            if forwarded:
                ips = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
                if len(ips) > self.proxies_count:
                    port = scope["client"][1] if scope.get("client") else 0
                    scope["client"] = (ips[-(self.proxies_count + 1)], port)

        await self.app(scope, receive, send)
