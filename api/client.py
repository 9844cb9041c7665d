"""
OpenAPI-driven HTTP client.

Loads an OpenAPI specification and runs its operations by operation id.
Used by the store to persist "last read" markers and fetch message history.
"""

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base exception for api errors."""

    def __init__(self, message: str, status: Optional[int] = None, errors: Optional[list] = None):
        super().__init__(message)
        self.status = status
        self.errors = errors or []


class Api:
    """
    Loads an OpenAPI specification that operations can be fetched from.

    Example:
        api = Api("https://convos.example.com/api.json")
        op = api.operation("connectionMessages")
        res = op.perform({"connection_id": "irc-libera", "limit": 40})
    """

    def __init__(
        self,
        url: str,
        timeout: int = 30,
        max_retries: int = 3,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize api.

        Args:
            url: URL to the OpenAPI specification
            timeout: Request timeout in seconds (default: 30)
            max_retries: Maximum retry attempts (default: 3)
            session: Optional requests session, e.g. one holding a login cookie
        """
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()
        self._spec: Optional[Dict[str, Any]] = None
        self._ops: Dict[str, Dict[str, Any]] = {}

    def operation(self, operation_id: str, default_params: Optional[Dict[str, Any]] = None) -> 'Operation':
        """
        Create an Operation by operation id.

        Args:
            operation_id: An operation id in the spec
            default_params: Parameters used when perform() does not override them

        Returns:
            An Operation object
        """
        return Operation(api=self, operation_id=operation_id, default_params=default_params)

    def spec(self, operation_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Get the spec of one operation, or the whole spec.

        The specification is fetched on first use and cached.

        Raises:
            ApiError: The specification could not be fetched
        """
        if self._spec is None:
            self._load_spec()
        if operation_id:
            return self._ops.get(operation_id)
        return self._spec

    def request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """
        Make HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Absolute URL
            **kwargs: Additional arguments for requests

        Returns:
            Response JSON data

        Raises:
            ApiError: Request failed
        """
        for attempt in range(self.max_retries):
            try:
                response = self.session.request(method, url, timeout=self.timeout, **kwargs)

                if response.status_code >= 500:
                    # Server error - retry with backoff
                    if attempt < self.max_retries - 1:
                        time.sleep(2 ** attempt)
                        continue
                    raise ApiError(f"Server error: {response.text}", status=response.status_code)

                if response.status_code >= 400:
                    # Client error - don't retry
                    errors = _response_errors(response)
                    message = errors[0].get('message') if errors else response.text
                    raise ApiError(f"Request error: {message}", status=response.status_code, errors=errors)

                return response.json() if response.content else {}

            except Timeout:
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                    continue
                raise ApiError("Request timed out")

            except ConnectionError:
                raise ApiError(f"Cannot connect to {url}")

            except RequestException as e:
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                    continue
                raise ApiError(f"Request failed: {e}")

        raise ApiError("Unexpected error")

    def _load_spec(self):
        spec = self.request('GET', self.url)
        base_url = _base_url(spec, self.url)
        ops = {}

        for path, methods in (spec.get('paths') or {}).items():
            for method, op in methods.items():
                if not isinstance(op, dict) or not op.get('operationId'):
                    continue
                op = dict(op)
                op['method'] = method.upper()
                op['url'] = base_url + path + '.json'
                op['parameters'] = [_resolve_ref(spec, p) for p in op.get('parameters') or []]
                ops[op['operationId']] = op

        self._spec = spec
        self._ops = ops
        logger.debug("Loaded %d operations from %s", len(ops), self.url)


class Operation:
    """One operation in the spec, with the result of the last perform()."""

    def __init__(self, api: Api, operation_id: str, default_params: Optional[Dict[str, Any]] = None):
        self.api = api
        self.id = operation_id
        self.default_params = default_params or {}
        self.status = 'pending'
        self.res: Dict[str, Any] = {}
        self.err: Optional[ApiError] = None

    def __repr__(self) -> str:
        return f"<Operation {self.id} {self.status}>"

    def is_(self, status: str) -> bool:
        return self.status == status

    def perform(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run the operation.

        Parameters are placed in the path, query string or JSON body according
        to their "in" field in the spec. Parameters the spec does not declare
        go in the query string of GET requests and in the body otherwise.

        Returns:
            Response JSON data

        Raises:
            ApiError: Unknown operation or request failed
        """
        self.status = 'loading'
        try:
            op = self.api.spec(self.id)
            if op is None:
                raise ApiError(f"Unknown operation: {self.id}")
            method, url, kwargs = self._build_request(op, {**self.default_params, **(params or {})})
            self.res = self.api.request(method, url, **kwargs)
        except ApiError as e:
            self.status = 'error'
            self.err = e
            raise

        self.status = 'success'
        self.err = None
        return self.res

    def _build_request(self, op: Dict[str, Any], params: Dict[str, Any]):
        url = op['url']
        query, body = {}, {}
        declared = set()

        for p in op.get('parameters') or []:
            name, location = p.get('name'), p.get('in')
            declared.add(name)
            if name not in params:
                continue
            if location == 'path':
                url = url.replace('{' + name + '}', quote(str(params[name]), safe=''))
            elif location == 'query':
                query[name] = params[name]
            elif location == 'body' and name == 'body' and isinstance(params[name], dict):
                body.update(params[name])
            else:
                body[name] = params[name]

        for name, value in params.items():
            if name in declared:
                continue
            if op['method'] == 'GET':
                query[name] = value
            else:
                body[name] = value

        kwargs: Dict[str, Any] = {'headers': {'Content-Type': 'application/json'}}
        if query:
            kwargs['params'] = query
        if body and op['method'] != 'GET':
            kwargs['json'] = body
        return op['method'], url, kwargs


def _base_url(spec: Dict[str, Any], spec_url: str) -> str:
    scheme = urlparse(spec_url).scheme or 'https'
    host = spec.get('host') or urlparse(spec_url).netloc
    return f"{scheme}://{host}{spec.get('basePath') or ''}"


def _resolve_ref(spec: Dict[str, Any], param: Dict[str, Any]) -> Dict[str, Any]:
    ref = param.get('$ref')
    if not ref:
        return param
    node: Any = spec
    for part in ref.lstrip('#/').split('/'):
        node = node[part]
    return node


def _response_errors(response) -> list:
    try:
        data = response.json()
    except ValueError:
        return []
    errors = data.get('errors') if isinstance(data, dict) else None
    return errors if isinstance(errors, list) else []
