from typing import Iterable, Protocol

POLICY_SEPARATOR = "+"


class Validator(Protocol):
    def matches(self, token: str) -> bool:
        ...

    def validate(self, data: bytes, token: str) -> None:
        """Raise ValidationFailed with a client-facing reason if ``data`` is rejected."""
        ...


def policy_tokens(policy: str) -> list[str]:
    if not policy:
        return []
    return policy.split(POLICY_SEPARATOR)


class ValidationPipeline:
    """
    Runs a partition's validation policy against an upload buffer.

    A policy is a "+"-joined list of tokens such as "jpeg+16:9". For every
    token, every registered validator that matches it is run against the whole
    buffer; the first failure aborts the pipeline.
    """

    def __init__(self, validators: Iterable[Validator] = ()) -> None:
        self._validators: list[Validator] = list(validators)

    def register(self, validator: Validator) -> None:
        self._validators.append(validator)

    @property
    def validators(self) -> tuple[Validator, ...]:
        return tuple(self._validators)

    def is_satisfiable(self, policy: str) -> bool:
        return all(
            any(v.matches(token) for v in self._validators) for token in policy_tokens(policy)
        )

    def execute(self, data: bytes, policy: str) -> bytes:
        for token in policy_tokens(policy):
            for validator in self._validators:
                if validator.matches(token):
                    validator.validate(data, token)
        return data
