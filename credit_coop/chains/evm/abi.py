"""Contract interface description: ABI catalogue and revert decoding."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from ...errors import InterfaceMismatchError

logger = logging.getLogger(__name__)

# Solidity built-in revert payloads
ERROR_STRING_SELECTOR = "0x08c379a0"
PANIC_SELECTOR = "0x4e487b71"

_ARTIFACT_CACHE: dict[Path, dict[str, Any]] = {}


def _load_artifact(path: Path) -> dict[str, Any]:
    path = path.resolve()
    if path not in _ARTIFACT_CACHE:
        _ARTIFACT_CACHE[path] = json.loads(path.read_text())
    return _ARTIFACT_CACHE[path]


def _canonical_type(param: dict[str, Any]) -> str:
    """Collapse tuple params into their canonical form, e.g. ``(uint16,uint16)[]``."""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def _selector(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


@dataclass(frozen=True)
class AbiFunction:
    """A single callable entry of the interface."""

    name: str
    signature: str
    selector: str
    input_types: tuple[str, ...]
    output_types: tuple[str, ...]
    output_names: tuple[str, ...]
    state_mutability: str

    @property
    def is_read(self) -> bool:
        return self.state_mutability in ("view", "pure")


@dataclass(frozen=True)
class AbiError:
    """A custom error the contract may revert with."""

    name: str
    signature: str
    selector: str
    input_types: tuple[str, ...]


@dataclass(frozen=True)
class RevertReason:
    """Decoded revert payload."""

    reason: str
    args: tuple[Any, ...] = ()
    data: str | None = None


class ContractInterface:
    """Fixed, versioned catalogue of a contract's functions and errors."""

    def __init__(
        self, contract_name: str, abi: Sequence[dict[str, Any]], version: str = ""
    ) -> None:
        self.contract_name = contract_name
        self.version = version
        self.abi: list[dict[str, Any]] = [dict(entry) for entry in abi]
        self._functions: dict[str, AbiFunction] = {}
        self._errors: dict[str, AbiError] = {}

        for entry in abi:
            kind = entry.get("type")
            if kind == "function":
                fn = self._build_function(entry)
                if fn.name in self._functions:
                    logger.debug("Overloaded function %s ignored", fn.signature)
                    continue
                self._functions[fn.name] = fn
            elif kind == "error":
                err = self._build_error(entry)
                self._errors[err.selector] = err

    @classmethod
    def from_artifact(cls, path: str | Path) -> ContractInterface:
        """Load an artifact of the form ``{"contractName", "version", "abi"}``."""
        artifact = _load_artifact(Path(path))
        return cls(
            artifact.get("contractName", Path(path).stem),
            artifact["abi"],
            version=str(artifact.get("version", "")),
        )

    @staticmethod
    def _build_function(entry: dict[str, Any]) -> AbiFunction:
        inputs = tuple(_canonical_type(p) for p in entry.get("inputs", []))
        signature = f"{entry['name']}({','.join(inputs)})"
        return AbiFunction(
            name=entry["name"],
            signature=signature,
            selector=_selector(signature),
            input_types=inputs,
            output_types=tuple(_canonical_type(p) for p in entry.get("outputs", [])),
            output_names=tuple(p.get("name", "") for p in entry.get("outputs", [])),
            state_mutability=entry.get("stateMutability", "nonpayable"),
        )

    @staticmethod
    def _build_error(entry: dict[str, Any]) -> AbiError:
        inputs = tuple(_canonical_type(p) for p in entry.get("inputs", []))
        signature = f"{entry['name']}({','.join(inputs)})"
        return AbiError(
            name=entry["name"],
            signature=signature,
            selector=_selector(signature),
            input_types=inputs,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def functions(self) -> dict[str, AbiFunction]:
        return dict(self._functions)

    def function(self, name: str) -> AbiFunction:
        try:
            return self._functions[name]
        except KeyError:
            raise InterfaceMismatchError(
                f"{self.contract_name} has no function '{name}'"
            ) from None

    def function_by_selector(self, selector: str) -> AbiFunction | None:
        selector = selector.lower()
        for fn in self._functions.values():
            if fn.selector == selector:
                return fn
        return None

    def require(self, *names: str) -> None:
        """Fail unless every named function is declared by the interface."""
        missing = [n for n in names if n not in self._functions]
        if missing:
            raise InterfaceMismatchError(
                f"{self.contract_name} {self.version} is missing functions: "
                + ", ".join(sorted(missing))
            )

    def decode_revert(self, data: str | None) -> RevertReason | None:
        """Resolve a revert payload to its reason, or ``None`` without data."""
        if not isinstance(data, str) or len(_strip_0x(data)) < 8:
            return None

        data = "0x" + _strip_0x(data).lower()
        selector = data[:10]

        try:
            body = bytes.fromhex(data[10:])
            if selector == ERROR_STRING_SELECTOR:
                (message,) = decode(["string"], body)
                return RevertReason(message, data=data)
            if selector == PANIC_SELECTOR:
                (code,) = decode(["uint256"], body)
                return RevertReason(f"Panic(0x{code:02x})", (code,), data)
            err = self._errors.get(selector)
            if err is not None:
                args = tuple(decode(list(err.input_types), body)) if err.input_types else ()
                return RevertReason(err.name, args, data)
        except (DecodingError, ValueError) as e:
            logger.debug("Could not decode revert payload %s: %s", data, e)

        return RevertReason(f"unknown error {selector}", data=data)
