"""Hostname → ``(Referer, Origin)`` resolution for CDN hotlink protection.

Pure lookup: an ordered table of substring rules plus a default.  The
table comes from configuration so rotating CDN aliases can be added
without a code change.  Order is significant: the first matching rule
wins, so a broad pattern placed early shadows every later rule it
overlaps with.
"""

from __future__ import annotations

from collections.abc import Iterable

from hlsrelay.domain.entities import (
    RefererCandidate,
    RefererRule,
    RelayTarget,
    origin_of,
)


class RefererResolver:
    """Resolves the first-guess referer and the retry candidate list.

    Instances are immutable after construction and safe to share across
    concurrent requests.
    """

    def __init__(
        self,
        rules: Iterable[RefererRule],
        default_referer: str,
        candidates: Iterable[RefererCandidate] = (),
    ) -> None:
        self._rules: tuple[RefererRule, ...] = tuple(rules)
        self._default = RefererCandidate(
            referer=default_referer, origin=origin_of(default_referer)
        )
        self._candidates: tuple[RefererCandidate, ...] = tuple(candidates)

    @property
    def rules(self) -> tuple[RefererRule, ...]:
        return self._rules

    def resolve(self, hostname: str, override: str | None = None) -> RefererCandidate:
        """Return the ``(Referer, Origin)`` pair to try first.

        A non-empty *override* is returned verbatim; its origin is
        ``None`` when it does not parse as an absolute URL (the caller
        then falls back to the target's origin).
        """
        if override and override.strip():
            referer = override.strip()
            return RefererCandidate(referer=referer, origin=origin_of(referer))

        host = hostname.lower()
        for rule in self._rules:
            if rule.matches(host):
                return RefererCandidate(
                    referer=rule.referer, origin=origin_of(rule.referer)
                )
        return self._default

    def candidates_for(self, target: RelayTarget) -> tuple[RefererCandidate, ...]:
        """Ordered retry candidates, ending with the target's own origin."""
        own = RefererCandidate(referer=f"{target.origin}/", origin=target.origin)
        return (*self._candidates, own)
