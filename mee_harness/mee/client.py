"""MEE node API client.

Quote, execute and track supertransactions against a MEE node.

- A fusion quote prices a set of instructions. The fee is paid in
  a token pulled from the EOA by the trigger, so the EOA needs no
  smart account funds up front.

- The quote starts with a ``transferFrom(eoa, nexus, amount)`` call that
  moves the trigger funds into the account, so the user instructions
  see them in their runtime balances.

- Executing the quote signs an EIP-2612 ``Permit`` for the trigger token.
  The permit lets the nexus account pull the funds, and its ``deadline``
  carries the quote hash, so the one signature also approves the quote.

- The node reports progress in its explorer endpoint until the
  supertransaction is mined or fails.

Example::

    from mee_harness.mee.client import FeeToken, Trigger, create_mee_client

    mee = create_mee_client(account=nexus, url="http://localhost:3000/v3", api_key=api_key)
    fusion_quote = mee.get_fusion_quote(
        trigger=Trigger(chain_id=1, token_address=usdc, amount=amount, include_fee=True),
        instructions=instructions,
        fee_token=FeeToken(address=usdc, chain_id=1),
    )
    result = mee.execute_fusion_quote(fusion_quote)
    receipt = mee.wait_for_supertransaction_receipt(result.hash)
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import requests
from eth_typing import HexAddress
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3

from mee_harness.mee.account import MultichainNexusAccount
from mee_harness.mee.composable import ERC20_ABI, ComposableCallData, Instruction, build_composable_call

logger = logging.getLogger(__name__)

#: Default number of retries for API requests
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5

#: Seconds a single API request may take
DEFAULT_REQUEST_TIMEOUT = 30.0

#: Supertransaction statuses after which nothing changes anymore
FINAL_TRANSACTION_STATUSES = frozenset({"MINED_SUCCESS", "MINED_FAIL", "FAILED"})

#: Status of a successfully executed supertransaction
MINED_SUCCESS = "MINED_SUCCESS"

#: EIP-2612 reads we need from the trigger token
ERC20_PERMIT_ABI = [
    {
        "name": "name",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "version",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "nonces",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

PERMIT_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Permit": [
        {"name": "owner", "type": "address"},
        {"name": "spender", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}


def build_permit_typed_data(
    token_name: str,
    token_version: str,
    chain_id: int,
    token_address: HexAddress | str,
    owner: HexAddress | str,
    spender: HexAddress | str,
    value: int,
    nonce: int,
    deadline: int,
) -> dict:
    """EIP-712 message for an EIP-2612 ``Permit``.

    :return:
        Full typed data, as ``LocalAccount.sign_typed_data(full_message=...)`` takes it
    """
    return {
        "types": PERMIT_TYPES,
        "primaryType": "Permit",
        "domain": {
            "name": token_name,
            "version": token_version,
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(token_address),
        },
        "message": {
            "owner": Web3.to_checksum_address(owner),
            "spender": Web3.to_checksum_address(spender),
            "value": value,
            "nonce": nonce,
            "deadline": deadline,
        },
    }


class MeeApiError(Exception):
    """MEE node replied with an error status."""

    def __init__(self, method: str, url: str, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"MEE node {method} {url} failed with HTTP {status_code}: {body}")


class SupertransactionTimeout(TimeoutError):
    """Supertransaction did not reach a final status in time."""


@dataclass(slots=True)
class Trigger:
    """Token transfer from the EOA that funds and starts a fusion supertransaction."""

    chain_id: int

    token_address: HexAddress

    #: Raw token amount
    amount: int

    #: Pay the fee out of ``amount``, otherwise it is pulled on top of it
    include_fee: bool = False

    def to_json(self) -> dict:
        return {
            "chainId": self.chain_id,
            "tokenAddress": self.token_address,
            "amount": str(self.amount),
            "includeFee": self.include_fee,
        }


@dataclass(slots=True)
class FeeToken:
    """Token the execution fee is paid in."""

    address: HexAddress

    chain_id: int


@dataclass(slots=True)
class PaymentInfo:
    """Fee part of a quote."""

    token_address: HexAddress

    chain_id: int

    #: Human-readable fee amount, as the node formats it
    token_amount: str

    #: Raw fee amount
    token_wei_amount: int

    @classmethod
    def from_json(cls, data: dict) -> "PaymentInfo":
        return cls(
            token_address=data.get("token"),
            chain_id=int(data.get("chainId", 0)),
            token_amount=str(data.get("tokenAmount")),
            token_wei_amount=int(data.get("tokenWeiAmount", 0)),
        )


@dataclass(slots=True)
class MeeQuote:
    """Quote as returned by the node."""

    #: Quote hash the EOA signs
    hash: str

    payment_info: PaymentInfo

    #: Full response payload, sent back on execute
    raw: dict = field(repr=False)


@dataclass(slots=True)
class FusionQuote:
    """Quote plus the trigger that funds it."""

    quote: MeeQuote

    trigger: Trigger


@dataclass(slots=True)
class ExecuteResult:
    #: Supertransaction hash
    hash: str


@dataclass(slots=True)
class SupertransactionReceipt:
    """Explorer view of a supertransaction."""

    hash: str

    transaction_status: str

    #: Per chain user operations with their execution data
    user_ops: list[dict]

    raw: dict = field(repr=False)

    @property
    def is_final(self) -> bool:
        return self.transaction_status in FINAL_TRANSACTION_STATUSES

    @classmethod
    def from_json(cls, hash: str, data: dict) -> "SupertransactionReceipt":
        return cls(
            hash=hash,
            transaction_status=data.get("transactionStatus", "PENDING"),
            user_ops=data.get("userOps") or [],
            raw=data,
        )


def create_mee_session(
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
) -> requests.Session:
    """Create a session that retries throttled and failed node requests.

    POST is retried as well, quote and explorer calls are idempotent.
    """
    session = requests.Session()
    retry_policy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        allowed_methods=Retry.DEFAULT_ALLOWED_METHODS | frozenset(["POST"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_policy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class MeeClient:
    """Talk to a MEE node on behalf of a nexus account.

    :param url:
        Versioned API root, e.g. ``http://localhost:3000/v3``
    """

    def __init__(
        self,
        account: MultichainNexusAccount,
        url: str,
        api_key: str,
        session: requests.Session | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.account = account
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.session = session or create_mee_session()
        self.request_timeout = request_timeout

    def __repr__(self) -> str:
        return f"<MeeClient {self.url}>"

    def _request(self, method: str, path: str, payload: dict | None = None) -> Any:
        url = f"{self.url}{path}"
        response = self.session.request(
            method,
            url,
            json=payload,
            headers={"x-api-key": self.api_key},
            timeout=self.request_timeout,
        )
        if not response.ok:
            raise MeeApiError(method, url, response.status_code, response.text)
        return response.json()

    def get_info(self) -> dict:
        """Node version and per chain health."""
        return self._request("GET", "/info")

    def _build_user_ops(self, instructions: list[list[Instruction]]) -> list[dict]:
        by_chain: dict[int, list[dict]] = {}
        for batch in instructions:
            for instruction in batch:
                by_chain.setdefault(instruction.chain_id, []).extend(c.to_json() for c in instruction.calls)

        user_ops = []
        for chain_id, calls in by_chain.items():
            user_ops.append(
                {
                    "chainId": str(chain_id),
                    "sender": self.account.address_on(chain_id),
                    "calls": calls,
                    "isComposable": True,
                }
            )
        return user_ops

    def build_trigger_instruction(self, trigger: Trigger) -> Instruction:
        """``transferFrom(eoa, nexus, amount)`` pulling the trigger funds into the account.

        Goes ahead of the user instructions.
        """
        nexus_address = self.account.address_on(trigger.chain_id)
        assert nexus_address, f"No nexus account address on chain {trigger.chain_id}"
        call = build_composable_call(
            ComposableCallData(
                abi=ERC20_ABI,
                chain_id=trigger.chain_id,
                function_name="transferFrom",
                args=[self.account.signer_address, nexus_address, trigger.amount],
                to=trigger.token_address,
            )
        )
        return Instruction(chain_id=trigger.chain_id, calls=(call,))

    def get_fusion_quote(
        self,
        trigger: Trigger,
        instructions: list[list[Instruction]],
        fee_token: FeeToken,
    ) -> FusionQuote:
        """Price the instructions, with the fee paid from the trigger.

        :param instructions:
            Instruction batches in execution order,
            the trigger pull is prepended here
        """
        assert instructions, "No instructions to quote"
        batches = [[self.build_trigger_instruction(trigger)], *instructions]
        payload = {
            "trigger": trigger.to_json(),
            "userOps": self._build_user_ops(batches),
            "paymentInfo": {
                "sender": self.account.address_on(fee_token.chain_id),
                "eoa": self.account.signer_address,
                "token": fee_token.address,
                "chainId": str(fee_token.chain_id),
            },
        }
        data = self._request("POST", "/quote-permit", payload)
        quote = MeeQuote(
            hash=data["hash"],
            payment_info=PaymentInfo.from_json(data.get("paymentInfo", {})),
            raw=data,
        )
        logger.info("Got fusion quote %s, fee %s", quote.hash, quote.payment_info.token_amount)
        return FusionQuote(quote=quote, trigger=trigger)

    def _read_permit_domain(self, chain_id: int, token_address: HexAddress, owner: HexAddress) -> tuple[str, str, int]:
        """Token name, version and the owner's permit nonce."""
        web3 = self.account.deployment_on(chain_id).web3
        token = web3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_PERMIT_ABI)
        name = token.functions.name().call()
        version = token.functions.version().call()
        nonce = token.functions.nonces(Web3.to_checksum_address(owner)).call()
        return name, version, nonce

    def build_permit(self, fusion_quote: FusionQuote) -> dict:
        """Permit typed data letting the nexus account pull the trigger funds.

        The deadline is the quote hash.
        """
        trigger = fusion_quote.trigger
        quote = fusion_quote.quote
        owner = self.account.signer_address
        spender = self.account.address_on(trigger.chain_id)
        assert spender, f"No nexus account address on chain {trigger.chain_id}"

        value = trigger.amount
        if not trigger.include_fee:
            value += quote.payment_info.token_wei_amount

        token_name, token_version, nonce = self._read_permit_domain(trigger.chain_id, trigger.token_address, owner)
        return build_permit_typed_data(
            token_name=token_name,
            token_version=token_version,
            chain_id=trigger.chain_id,
            token_address=trigger.token_address,
            owner=owner,
            spender=spender,
            value=value,
            nonce=nonce,
            deadline=int(quote.hash, 16),
        )

    def execute_fusion_quote(self, fusion_quote: FusionQuote) -> ExecuteResult:
        """Sign the trigger permit with the EOA and submit the quote."""
        typed_data = self.build_permit(fusion_quote)
        signed = self.account.signer.sign_typed_data(full_message=typed_data)
        signature = signed.signature.hex()
        if not signature.startswith("0x"):
            signature = "0x" + signature

        permit = typed_data["message"]
        payload = {
            **fusion_quote.quote.raw,
            "trigger": fusion_quote.trigger.to_json(),
            "signature": signature,
            "permit": {
                "owner": permit["owner"],
                "spender": permit["spender"],
                "value": str(permit["value"]),
                "nonce": str(permit["nonce"]),
                "deadline": str(permit["deadline"]),
            },
        }
        data = self._request("POST", "/exec", payload)
        return ExecuteResult(hash=data["hash"])

    def get_supertransaction_receipt(self, hash: str) -> SupertransactionReceipt:
        return SupertransactionReceipt.from_json(hash, self._request("GET", f"/explorer/{hash}"))

    def _wait_confirmations(
        self,
        receipt: SupertransactionReceipt,
        confirmations: int,
        deadline: float,
        poll_interval: float,
        sleep: Callable[[float], None],
    ):
        for user_op in receipt.user_ops:
            tx_hash = (user_op.get("executionData") or {}).get("transactionHash")
            if not tx_hash:
                continue
            chain_id = int(user_op.get("chainId", 0))
            deployment = self.account.deployments.get(chain_id)
            if deployment is None:
                continue
            web3 = deployment.web3
            tx_receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=max(deadline - time.monotonic(), 0.1))
            # Anvil only mines on new transactions, the block height may never move
            while web3.eth.block_number - tx_receipt["blockNumber"] + 1 < confirmations:
                if time.monotonic() >= deadline:
                    raise SupertransactionTimeout(f"Transaction {tx_hash} on chain {chain_id} did not reach {confirmations} confirmations")
                sleep(poll_interval)

    def wait_for_supertransaction_receipt(
        self,
        hash: str,
        confirmations: int = 1,
        timeout: float = 300.0,
        poll_interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> SupertransactionReceipt:
        """Poll the explorer until the supertransaction is final.

        :param confirmations:
            Blocks to wait on top of the mined block, per chain

        :param timeout:
            Seconds for the whole wait, confirmations included

        :return:
            Final receipt, check :py:attr:`SupertransactionReceipt.transaction_status`

        :raise SupertransactionTimeout:
            Still pending, or short of confirmations, after ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        while True:
            receipt = self.get_supertransaction_receipt(hash)
            if receipt.is_final:
                if receipt.transaction_status == MINED_SUCCESS and confirmations > 1:
                    self._wait_confirmations(receipt, confirmations, deadline, poll_interval, sleep)
                return receipt

            logger.debug("Supertransaction %s status %s", hash, receipt.transaction_status)
            if time.monotonic() >= deadline:
                raise SupertransactionTimeout(f"Supertransaction {hash} still {receipt.transaction_status} after {timeout}s")
            sleep(poll_interval)


def create_mee_client(
    account: MultichainNexusAccount,
    url: str,
    api_key: str,
    session: requests.Session | None = None,
) -> MeeClient:
    return MeeClient(account=account, url=url, api_key=api_key, session=session)
