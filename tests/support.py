from typing import Any

from fiatrails import Error, MintError, Ok, Result

CLIENT_SECRET = "client-secret"
WEBHOOK_SECRET = "webhook-secret"
OFFICER = "alice"
OPERATOR = "ops"
USER = "0x00000000000000000000000000000000000000a1"
ONE_TOKEN = 10**18


def unwrap(result: Result[Any, MintError]) -> Any:
    match result:
        case Ok(value):
            return value
        case Error(err):
            raise AssertionError(f"expected Ok, got {err}")


def unwrap_err(result: Result[Any, MintError]) -> MintError:
    match result:
        case Ok(value):
            raise AssertionError(f"expected Error, got {value}")
        case Error(err):
            return err
