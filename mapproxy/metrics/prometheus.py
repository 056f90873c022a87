from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

metrics_router = APIRouter()

# outcome: completed | not_found | bad_target | forward_failed | truncated
PROXY_REQUESTS = Counter("mapproxy_requests_total", "Proxied requests by outcome", ["outcome"])
# result: hit | miss | error
LOOKUPS = Counter("mapproxy_lookups_total", "Mapping lookups by result", ["result"])
ADMIN_AUTH_FAILURES = Counter("mapproxy_admin_auth_failures_total", "Rejected admin credentials")


@metrics_router.get("/metrics")
async def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
