"""
Messaging Collaborator - Envio de mensagens e contexto de thread.

O engine só conhece a interface MessagingClient; o provedor de entrega
(Gmail, SMTP, ...) fica atrás do serviço HTTP configurado em MESSAGING_API_URL.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from dripflow.exceptions import PermanentStepError, TransientDependencyError

logger = logging.getLogger(__name__)


class MessagingClient:
    """Interface do Messaging Collaborator"""

    async def send_message(
        self,
        subject_id: str,
        content: Dict[str, Any],
        thread_id: Optional[str] = None,
        reply_to_message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Envia mensagem ao contato.

        Args:
            subject_id: UUID do contato
            content: {'to', 'subject', 'html', 'text', 'headers'}
            thread_id: Thread a continuar (opcional)
            reply_to_message_id: Message-ID da mensagem original (opcional)

        Returns:
            {'message_id': str, 'thread_id': str}
        """
        raise NotImplementedError

    async def fetch_thread_context(self, subject_id: str, thread_id: str) -> Optional[Dict[str, Any]]:
        """Histórico da thread; None quando não há histórico"""
        raise NotImplementedError

    async def resolve_message_identifier_header(self, subject_id: str, message_id: str) -> Optional[str]:
        """Message-ID (cabeçalho RFC 5322) da mensagem enviada"""
        raise NotImplementedError


class HttpMessagingClient(MessagingClient):
    """
    Messaging Collaborator sobre HTTP.

    Uso:
        client = HttpMessagingClient('http://messaging:8081', token='...', timeout=30.0)
        result = await client.send_message(subject_id, {'subject': 'Hi', 'html': '<p>Hi</p>'})
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config) -> 'HttpMessagingClient':
        return cls(
            base_url=config.get('MESSAGING_API_URL', 'http://localhost:8081'),
            token=config.get('MESSAGING_API_TOKEN') or None,
            timeout=float(config.get('MESSAGING_TIMEOUT_SECONDS', 30.0)),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise TransientDependencyError(f"Messaging timeout on {method} {path}") from e
        except httpx.TransportError as e:
            raise TransientDependencyError(f"Messaging unreachable: {e}") from e

        if response.status_code >= 500:
            raise TransientDependencyError(
                f"Messaging API error: {response.status_code} - {response.text}"
            )
        return response

    async def send_message(self, subject_id, content, thread_id=None, reply_to_message_id=None):
        payload = {
            'subject_id': str(subject_id),
            'content': content,
            'thread_id': thread_id,
            'reply_to_message_id': reply_to_message_id,
        }
        response = await self._request('POST', '/messages', json=payload)
        if response.status_code >= 400:
            raise PermanentStepError(
                f"Messaging API rejected message: {response.status_code} - {response.text}"
            )
        data = response.json()
        logger.debug(f"Message sent to {subject_id}: {data.get('message_id')}")
        return {'message_id': data.get('message_id'), 'thread_id': data.get('thread_id')}

    async def fetch_thread_context(self, subject_id, thread_id):
        response = await self._request(
            'GET', f'/threads/{thread_id}', params={'subject_id': str(subject_id)}
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise PermanentStepError(
                f"Messaging API error: {response.status_code} - {response.text}"
            )
        data = response.json()
        return data or None

    async def resolve_message_identifier_header(self, subject_id, message_id):
        response = await self._request(
            'GET', f'/messages/{message_id}/header', params={'subject_id': str(subject_id)}
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise PermanentStepError(
                f"Messaging API error: {response.status_code} - {response.text}"
            )
        return response.json().get('message_id_header')
