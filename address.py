'''
Tolerant extraction of bracketed addresses from MAIL/RCPT arguments.

Anything outside of ``<...>`` is ignored, so all of these yield ``a@x.com``:

	FROM:<a@x.com>
	FROM: <a@x.com> SIZE=1000
	from:"Arthur" <a@x.com>
'''
from __future__ import annotations

# python imports:
import logging
from typing import List, Optional as Opt

logger = logging.getLogger ( __name__ )

Address = str


class Extraction:
	def __init__ ( self, prefix_ok: bool, addresses: List[Address] ) -> None:
		self.prefix_ok = prefix_ok
		self.addresses = addresses

	def first ( self ) -> Opt[Address]:
		if not self.addresses:
			return None
		return self.addresses[0]

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(prefix_ok={self.prefix_ok!r}, addresses={self.addresses!r})'


def has_prefix ( argument: str, expected_prefix: str ) -> bool:
	return argument.lstrip().upper().startswith ( expected_prefix.upper() )


def tokenize ( argument: str ) -> List[Address]:
	addresses: List[Address] = []
	start: Opt[int] = None
	for i, c in enumerate ( argument ):
		if c == '<':
			start = i + 1 # an unclosed '<' is abandoned in favor of the newer one
		elif c == '>' and start is not None:
			address = argument[start:i].strip()
			if address:
				addresses.append ( address )
			start = None
	return addresses


def extract ( argument: str, expected_prefix: str ) -> Extraction:
	log = logger.getChild ( 'extract' )
	prefix_ok = has_prefix ( argument, expected_prefix )
	if not prefix_ok:
		log.debug ( f'{argument=} does not start with {expected_prefix=}' )
	return Extraction ( prefix_ok, tokenize ( argument ) )
