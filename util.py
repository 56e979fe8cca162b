import base64
from typing import Iterator, Union

BYTES = Union[bytes,bytearray,memoryview]
bytes_types = ( bytes, bytearray, memoryview )

def b2s ( b: BYTES, encoding: str = 'us-ascii', errors: str = 'strict' ) -> str:
	return bytes ( b ).decode ( encoding, errors )

def s2b ( s: str, encoding: str = 'us-ascii', errors: str = 'strict' ) -> bytes:
	return s.encode ( encoding, errors )

def b2log ( b: BYTES ) -> str:
	# wire traffic is mirrored to the log and may carry 8-bit content
	return b2s ( b, 'utf-8', 'replace' ).rstrip()

def b64_lines ( data: BYTES, width: int = 76 ) -> Iterator[str]:
	encoded = b2s ( base64.b64encode ( bytes ( data ) ) )
	for i in range ( 0, len ( encoded ), width ):
		yield encoded[i:i + width]
