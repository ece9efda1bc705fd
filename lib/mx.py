"""MX record checks with a per-run, per-domain cache.

dnspython is blocking, so lookups run in the default executor.
"""

import asyncio
from typing import Dict, Optional

import dns.exception
import dns.resolver
from loguru import logger


def _make_resolver() -> dns.resolver.Resolver:
    resolver = dns.resolver.Resolver()
    resolver.timeout = 5
    resolver.lifetime = 10
    return resolver


class MxVerifier:
    """Answers "does this email's domain accept mail?" once per domain."""

    def __init__(self, resolver: Optional[dns.resolver.Resolver] = None):
        self._resolver = resolver
        self._cache: Dict[str, bool] = {}

    @property
    def resolver(self) -> dns.resolver.Resolver:
        if self._resolver is None:
            self._resolver = _make_resolver()
        return self._resolver

    def _has_mx(self, domain: str) -> bool:
        try:
            answers = self.resolver.resolve(domain, "MX")
        except dns.exception.DNSException as e:
            logger.debug(f"MX lookup failed for {domain}: {e.__class__.__name__}")
            return False
        return len(answers) > 0

    async def has_mx(self, email_or_domain: str) -> bool:
        domain = email_or_domain.rsplit("@", 1)[-1].strip().lower()
        if not domain:
            return False
        if domain in self._cache:
            return self._cache[domain]
        loop = asyncio.get_running_loop()
        valid = await loop.run_in_executor(None, self._has_mx, domain)
        self._cache[domain] = valid
        return valid

    @property
    def cached_domains(self) -> int:
        return len(self._cache)
