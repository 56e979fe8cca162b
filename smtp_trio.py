from __future__ import annotations

# python imports:
import logging
import trio # pip install trio
from typing import Optional as Opt, Type

# naivemail imports:
import ingest
from mailstore import MailStore
import smtp_async
import smtp_proto as proto
from transport_trio import TrioTransport as Transport

logger = logging.getLogger ( __name__ )


class Client ( smtp_async.Client ):
	@classmethod
	async def connect ( cls: Type[Client],
		hostname: str,
		port: int,
		timeout: Opt[float] = None,
	) -> Client:
		transport = await Transport.connect ( hostname, port, timeout )
		return cls ( transport, hostname )


class Server ( smtp_async.Server ):
	@classmethod
	def from_stream ( cls: Type[Server],
		stream: trio.abc.Stream,
		server_hostname: str,
		store: MailStore,
		timeout: Opt[float] = None,
	) -> Server:
		transport = Transport ( stream, timeout )
		return cls ( transport, server_hostname, store )

	async def on_CompleteEvent ( self, event: proto.CompleteEvent ) -> None:
		# ingest does blocking file i/o
		await trio.to_thread.run_sync ( ingest.ingest, event, self.store )


async def serve ( store: MailStore,
	hostname: str = 'localhost',
	host: Opt[str] = None,
	port: int = 25,
	timeout: Opt[float] = None,
	*,
	servercls: Type[Server] = Server,
	task_status: trio.TaskStatus = trio.TASK_STATUS_IGNORED,
) -> None:
	'''
	Listen on `host`:`port` and run one `servercls` session task per connection
	until cancelled. Started with nursery.start(), the listeners are handed back
	through `task_status`.
	'''
	log = logger.getChild ( 'serve' )

	async def handler ( stream: trio.SocketStream ) -> None:
		server = servercls.from_stream ( stream, hostname, store, timeout )
		try:
			await server.run()
		except Exception:
			log.exception ( f'unhandled error serving {server.proto.peer}:' )

	log.info ( f'listening on {host or "*"}:{port} as {hostname!r}' )
	await trio.serve_tcp ( handler, port, host = host, task_status = task_status )
