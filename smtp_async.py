# system imports:
from abc import abstractmethod
import logging

# naivemail imports:
from compose import OutboundMessage, serialize
from event_handling import AsyncClient, AsyncServer
from mailstore import MailStore
import smtp_proto as proto
from transport import AsyncTransport

logger = logging.getLogger ( __name__ )


class Client ( AsyncClient ):
	protocls = proto.Client

	async def greeting ( self ) -> proto.SuccessResponse:
		return await self._request ( proto.GreetingRequest() )

	async def helo ( self, local_hostname: str ) -> proto.SuccessResponse:
		return await self._request ( proto.HeloRequest ( local_hostname ) )

	async def ehlo ( self, local_hostname: str ) -> proto.EhloResponse:
		return await self._request ( proto.EhloRequest ( local_hostname ) )

	async def mail_from ( self, email: str ) -> proto.SuccessResponse:
		return await self._request ( proto.MailFromRequest ( email ) )

	async def rcpt_to ( self, email: str ) -> proto.SuccessResponse:
		return await self._request ( proto.RcptToRequest ( email ) )

	async def data ( self, content: bytes ) -> proto.SuccessResponse:
		return await self._request ( proto.DataRequest ( content ) )

	async def rset ( self ) -> proto.SuccessResponse:
		return await self._request ( proto.RsetRequest() )

	async def noop ( self ) -> proto.SuccessResponse:
		return await self._request ( proto.NoOpRequest() )

	async def quit ( self ) -> proto.SuccessResponse:
		return await self._request ( proto.QuitRequest() )

	async def send_message ( self, msg: OutboundMessage ) -> proto.SuccessResponse:
		log = logger.getChild ( 'Client.send_message' )
		await self.mail_from ( msg.mail_from )
		for rcpt in msg.rcpt_to:
			await self.rcpt_to ( rcpt )
		r = await self.data ( serialize ( msg ) )
		log.debug ( f'{msg!r} -> {r!r}' )
		return r


class Server ( AsyncServer ):
	protocls = proto.Server

	def __init__ ( self, transport: AsyncTransport, server_hostname: str, store: MailStore ) -> None:
		super().__init__ ( transport, server_hostname )
		self.store = store

	async def on_GreetingAcceptEvent ( self, event: proto.GreetingAcceptEvent ) -> None:
		# implementations only need to override this if they want to change the behavior
		event.accept()

	@abstractmethod
	async def on_CompleteEvent ( self, event: proto.CompleteEvent ) -> None:
		'''
		Runs on the event loop: ingest.ingest() does blocking file i/o and has
		to be handed off to a worker thread by the implementation.
		'''
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.on_CompleteEvent()' )
