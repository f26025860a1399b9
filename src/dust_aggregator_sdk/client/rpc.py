"""JSON-RPC submitter for the settlement network.

Signs operation requests, submits them to the settlement node and waits for
their resolution. Submissions from one account are serialized because every
submission consumes a sequence number snapshot of that account; submissions
from different accounts run concurrently.

Node methods used:
    getAccount          {"address"}      -> {"sequence"}
    sendTransaction     {"transaction"}  -> {"hash", "status", "errorResult"?}
    getTransaction      {"hash"}         -> {"status", "returnValue"?, "resultError"?}
    simulateTransaction {"transaction"}  -> {"results": [{"returnValue"}], "error"?}
"""

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from typing import Any, Dict, Optional

import httpx

from ..aggregator.encoding import encode_call_data
from ..aggregator.errors import InvocationTimeoutError, SigningError, SubmissionError
from ..aggregator.signing import InvocationSigner, sign_invocation
from ..aggregator.types import OperationRequest, SignedSubmission, SubmissionStatus

logger = logging.getLogger(__name__)

# sendTransaction statuses
ACCEPTED_STATUSES = {"PENDING", "DUPLICATE"}

# getTransaction statuses
TX_SUCCESS = "SUCCESS"
TX_FAILED = "FAILED"
TX_NOT_FOUND = "NOT_FOUND"


async def signer_address(signer: InvocationSigner) -> str:
    """Ask a signer for its address, reporting failures as SigningError."""
    try:
        return await signer.get_address()
    except Exception as e:
        raise SigningError(f"Signer address unavailable: {e}", cause=e)


def build_envelope(submission: SignedSubmission) -> Dict[str, Any]:
    """Serialize a signed submission into the node's transaction envelope."""
    request = submission.request
    return {
        "networkId": request.network_id,
        "contract": request.contract_address,
        "operation": request.operation,
        "callData": "0x" + encode_call_data(request).hex(),
        "source": submission.source_address,
        "sequence": str(submission.sequence),
        "fee": str(request.fee_hint),
        "deadline": submission.deadline,
        "signature": submission.signature,
    }


class RpcSubmitter:
    """Submits signed contract invocations over JSON-RPC.

    Example:
        ```python
        async with RpcSubmitter("https://rpc.example.org") as submitter:
            submission = await submitter.execute(request, signer)
            print(submission.handle, submission.raw_result)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 1.0,
    ):
        """Initialize the submitter.

        Args:
            rpc_url: Settlement node JSON-RPC endpoint
            http_client: Optional preconfigured HTTP client (closed by the caller)
            poll_interval: Seconds between getTransaction polls
        """
        self.rpc_url = rpc_url
        self.poll_interval = poll_interval
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=10.0)
        self._account_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def __aenter__(self) -> "RpcSubmitter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        request = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params,
        }

        try:
            response = await self._http_client.post(
                self.rpc_url,
                headers={"Content-Type": "application/json"},
                json=request,
            )
        except httpx.HTTPError as e:
            raise SubmissionError(f"{method} request failed: {e}", cause=e)

        try:
            server_response = response.json()
        except ValueError as e:
            raise SubmissionError(
                f"{method} request failed: {response.status_code} {response.text}",
                cause=e,
            )

        if isinstance(server_response, dict) and server_response.get("error"):
            error = server_response["error"]
            if isinstance(error, dict):
                raise SubmissionError(
                    f"{method} failed: {error.get('message')} (code: {error.get('code')})"
                )
            raise SubmissionError(f"{method} failed: {error}")

        if not response.is_success:
            raise SubmissionError(
                f"{method} request failed: {response.status_code} {response.text}"
            )

        result = server_response.get("result") if isinstance(server_response, dict) else None
        if not isinstance(result, dict):
            raise SubmissionError(f"{method} returned an empty result")
        return result

    async def get_sequence(self, address: str) -> int:
        """Fetch the current sequence number of an account."""
        result = await self._call("getAccount", {"address": address})
        try:
            return int(result["sequence"])
        except (KeyError, TypeError, ValueError) as e:
            raise SubmissionError(f"Malformed account for {address}: {result}", cause=e)

    async def submit(
        self, request: OperationRequest, signer: InvocationSigner
    ) -> SignedSubmission:
        """Sign and submit an invocation using a fresh sequence snapshot.

        Callers submitting several invocations from one account should go
        through ``execute``, which serializes them.

        Returns:
            SignedSubmission in the submitted state

        Raises:
            SigningError: If the signer cannot sign
            SubmissionError: If the node rejects the invocation
        """
        source = await signer_address(signer)
        sequence = await self.get_sequence(source) + 1
        deadline = int(time.time() + request.timeout_seconds)

        submission = await sign_invocation(signer, request, sequence, deadline)
        result = await self._call(
            "sendTransaction", {"transaction": build_envelope(submission)}
        )

        status = result.get("status")
        handle = result.get("hash")
        if status not in ACCEPTED_STATUSES or not handle:
            submission.status = SubmissionStatus.FAILED
            reason = result.get("errorResult") or status or "no hash returned"
            submission.error = SubmissionError(
                f"{request.operation} rejected: {reason}", handle=handle
            )
            raise submission.error

        submission.handle = handle
        submission.status = SubmissionStatus.SUBMITTED
        logger.debug(
            "Submitted %s from %s (sequence %d): %s",
            request.operation,
            submission.source_address,
            sequence,
            handle,
        )
        return submission

    async def wait_for_result(self, submission: SignedSubmission) -> SignedSubmission:
        """Poll the node until a submitted invocation resolves.

        Returns:
            SignedSubmission in the resolved state with ``raw_result`` set

        Raises:
            SubmissionError: If the invocation failed on-chain
        """
        if submission.handle is None:
            raise SubmissionError(f"{submission.request.operation} was never submitted")

        while True:
            result = await self._call("getTransaction", {"hash": submission.handle})
            status = result.get("status")

            if status == TX_SUCCESS:
                submission.raw_result = result.get("returnValue")
                submission.status = SubmissionStatus.RESOLVED
                return submission

            if status == TX_FAILED:
                submission.status = SubmissionStatus.FAILED
                submission.error = SubmissionError(
                    f"{submission.request.operation} failed: "
                    f"{result.get('resultError', 'transaction failed')}",
                    handle=submission.handle,
                )
                raise submission.error

            if status != TX_NOT_FOUND:
                raise SubmissionError(
                    f"Unexpected transaction status: {status}", handle=submission.handle
                )

            await asyncio.sleep(self.poll_interval)

    async def execute(
        self, request: OperationRequest, signer: InvocationSigner
    ) -> SignedSubmission:
        """Submit an invocation and wait for it to resolve.

        Holds the signing account for the whole submission, and bounds it by
        the request's timeout window.

        Returns:
            Resolved SignedSubmission

        Raises:
            SigningError: If the signer cannot sign
            SubmissionError: If the node rejects or fails the invocation
            InvocationTimeoutError: If it does not resolve within the window
        """
        if request.read_only:
            raise SubmissionError(f"{request.operation} is read-only; use simulate()")

        account = (await signer_address(signer)).lower()
        async with self._account_locks[account]:
            try:
                submission = await asyncio.wait_for(
                    self._submit_and_wait(request, signer), request.timeout_seconds
                )
            except asyncio.TimeoutError as e:
                raise InvocationTimeoutError(
                    f"{request.operation} did not resolve within "
                    f"{request.timeout_seconds}s",
                    cause=e,
                )
        return submission

    async def _submit_and_wait(
        self, request: OperationRequest, signer: InvocationSigner
    ) -> SignedSubmission:
        submission = await self.submit(request, signer)
        return await self.wait_for_result(submission)

    async def simulate(
        self, request: OperationRequest, source_address: str
    ) -> Optional[Dict[str, Any]]:
        """Simulate a read-only invocation without signing or consuming a sequence.

        Returns:
            The raw, type-tagged return value

        Raises:
            SubmissionError: If the simulation fails
            InvocationTimeoutError: If it does not answer within the window
        """
        envelope = {
            "networkId": request.network_id,
            "contract": request.contract_address,
            "operation": request.operation,
            "callData": "0x" + encode_call_data(request).hex(),
            "source": source_address,
        }
        try:
            result = await asyncio.wait_for(
                self._call("simulateTransaction", {"transaction": envelope}),
                request.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise InvocationTimeoutError(
                f"{request.operation} simulation timed out", cause=e
            )

        if result.get("error"):
            raise SubmissionError(f"{request.operation} simulation failed: {result['error']}")

        results = result.get("results") or []
        if not results:
            raise SubmissionError(f"{request.operation} simulation returned no results")
        return results[0].get("returnValue")

