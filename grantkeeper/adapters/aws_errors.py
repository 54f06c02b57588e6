from typing import Callable, Iterable

from botocore.exceptions import ClientError


def error_code(err: BaseException) -> str:
    """Returns the AWS error code of a ClientError, or '' for anything else."""
    if isinstance(err, ClientError):
        return err.response.get("Error", {}).get("Code", "")
    return ""


def error_message(err: BaseException) -> str:
    if isinstance(err, ClientError):
        return err.response.get("Error", {}).get("Message", "") or str(err)
    return str(err)


def has_code(codes: Iterable[str]) -> Callable[[Exception], bool]:
    """Builds a retry predicate matching ClientErrors with one of `codes`."""
    wanted = frozenset(codes)

    def predicate(err: Exception) -> bool:
        return error_code(err) in wanted

    return predicate


NOT_FOUND_CODES = frozenset({"ResourceNotFoundException", "AccountNotFoundException"})
THROTTLING_CODES = frozenset({"ThrottlingException", "TooManyRequestsException"})
