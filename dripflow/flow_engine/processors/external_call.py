"""
ExternalCall step - HTTP request whose response is stored in enrollment variables.

Config:
    {'url': 'https://api.example.com/users/{{contact.email}}',
     'method': 'POST',
     'headers': {'Authorization': 'Bearer ...'},
     'body': '{"email": "{{contact.email}}", "flow": "{{flow.name}}"}',
     'variableName': 'lookup',
     'timeout': 5000}

Stored under variables[variableName]:
    {'status', 'statusText', 'data', 'headers', 'timestamp'}
or on timeout/network error:
    {'error': True, 'message', 'timestamp'}
"""

import json
import logging

import httpx

from dripflow.flow_engine.flow_model import StepKind
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.processors.base import StepHandler, first_present

logger = logging.getLogger(__name__)

BODY_METHODS = ('POST', 'PUT', 'PATCH')


class ExternalCallHandler(StepHandler):
    kind = StepKind.EXTERNAL_CALL.value

    async def process(self, ctx, enrollment, step) -> Outcome:
        config = step.config
        url = first_present(config, 'url', 'endpoint')
        method = str(first_present(config, 'method', default='GET')).upper()
        variable_name = first_present(config, 'variableName', 'variable')

        if not url or not variable_name:
            return Outcome.fail('URL, method, and variable name are required')

        resolver = ctx.resolver_for(enrollment)
        url = resolver.resolve_text(url)

        headers = {
            'Content-Type': 'application/json',
            'User-Agent': ctx.config.get('EXTERNAL_CALL_USER_AGENT', 'dripflow/1.0'),
        }
        for key, value in (config.get('headers') or {}).items():
            headers[key] = resolver.resolve_text(str(value))

        content = None
        body = config.get('body')
        if body and method in BODY_METHODS:
            if isinstance(body, (dict, list)):
                content = json.dumps(resolver.resolve(body))
            else:
                content = resolver.resolve_text(str(body))

        timeout_ms = first_present(config, 'timeout', default=ctx.config.get('EXTERNAL_CALL_TIMEOUT_MS', 30000))
        timeout = float(timeout_ms) / 1000.0

        logger.info(f"ExternalCall {step.id}: {method} {url}")
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=ctx.http_transport) as client:
                response = await client.request(method, url, headers=headers, content=content)
        except httpx.InvalidURL as e:
            return Outcome.fail(
                f"Invalid URL: {e}",
                variables={variable_name: {
                    'error': True,
                    'message': str(e),
                    'timestamp': ctx.now.isoformat(),
                }},
            )
        except httpx.HTTPError as e:
            message = str(e) or e.__class__.__name__
            logger.warning(f"ExternalCall {step.id} failed for enrollment {enrollment.id}: {message}")
            return Outcome.fail(
                f"External call failed: {message}",
                transient=True,
                variables={variable_name: {
                    'error': True,
                    'message': message,
                    'timestamp': ctx.now.isoformat(),
                }},
            )

        return Outcome.done(variables={variable_name: {
            'status': response.status_code,
            'statusText': response.reason_phrase,
            'data': self._parse_body(response),
            'headers': dict(response.headers),
            'timestamp': ctx.now.isoformat(),
        }})

    def _parse_body(self, response: httpx.Response):
        if 'application/json' in response.headers.get('content-type', ''):
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text
