"""Link discovery: find creation endpoints from a representation's link set."""

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from vcd_migrate.exceptions import NotFoundError
from vcd_migrate.models import LinkRelation, links_of

if TYPE_CHECKING:
    from vcd_migrate.client import VcdClient

logger = structlog.get_logger(__name__)


def select_link(links: Iterable[LinkRelation], rel: str, content_type: str) -> str:
    """Return the href of the single link matching both ``rel`` and ``content_type``.

    Matching is exact on both fields. There is no fallback to a looser match.

    Raises:
        NotFoundError: If zero or more than one link matches.
    """
    matches = [
        link.href for link in links if link.rel == rel and link.type == content_type
    ]
    if len(matches) != 1:
        raise NotFoundError(
            f"Expected exactly one link rel={rel!r} type={content_type!r}, "
            f"found {len(matches)}"
        )
    return matches[0]


async def resolve_link(
    client: "VcdClient", lookup_url: str, rel: str, content_type: str
) -> str:
    """Fetch ``lookup_url`` and pick the link matching ``rel`` and ``content_type``.

    Args:
        client: Connected client for the endpoint that owns ``lookup_url``.
        lookup_url: Representation whose links are scanned.
        rel: Link relation, for example ``add``.
        content_type: Media type the link must declare.

    Returns:
        The matching link's href.

    Raises:
        NotFoundError: If zero or more than one link matches.
    """
    document = await client.get(lookup_url)
    body = next(iter(document.values())) if document else None
    links = links_of(body) if isinstance(body, dict) else []
    try:
        href = select_link(links, rel, content_type)
    except NotFoundError as e:
        raise NotFoundError(f"{e} at {lookup_url}") from e

    logger.debug(
        "Resolved link", lookup_url=lookup_url, rel=rel, type=content_type, href=href
    )
    return href
