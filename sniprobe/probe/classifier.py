"""Outcome classifier.

Classification is two pure steps:

1. ``categorize(exc)`` folds whatever asyncio, socket or ssl raised into a
   ``FailureKind``. This is the only place that knows about exception types.
2. ``classify(stage, kind)`` maps a failure kind (or ``None`` for a
   completed handshake) at a given stage to an ``Outcome``: the code written
   to the result stream plus the retry and endpoint policy.

Policy table (terminal outcomes are written to the result stream):

=====================  =====  ========  ===========
Code                   Stage  Terminal  Endpoint
=====================  =====  ========  ===========
Timeout                TCP    no        cooldown
Refused                TCP    no        evict
Unreachable            TCP    no        evict
RST                    TCP    no        release
Unexpected             TCP    no        release
EOF                    both   yes       release
Timeout                TLS    yes       release
RST                    TLS    yes       residual
Success                TLS    yes       release
TLSRecordHeaderError   TLS    no        evict
X509HostnameError      TLS    yes       evict
Unexpected             TLS    yes       release
=====================  =====  ========  ===========

File-descriptor exhaustion is not an outcome: ``classify`` raises
``ResourceExhaustedError`` and the run is aborted.
"""

from __future__ import annotations

import asyncio
import errno
import ssl

from sniprobe.errors import ResourceExhaustedError
from sniprobe.models.outcomes import Disposition, FailureKind, Outcome, OutcomeCode, Stage

# OpenSSL reasons raised when the peer answers with bytes that are not a
# TLS record (plain HTTP, SSH banners, garbage).
PROTOCOL_MISMATCH_REASONS = frozenset(
    {
        "WRONG_VERSION_NUMBER",
        "RECORD_LAYER_FAILURE",
        "PACKET_LENGTH_TOO_LONG",
        "UNKNOWN_PROTOCOL",
        "HTTP_REQUEST",
        "HTTPS_PROXY_REQUEST",
        "RECORD_TOO_LARGE",
        "WRONG_SSL_VERSION",
    }
)

# X509_V_ERR_HOSTNAME_MISMATCH
HOSTNAME_MISMATCH_VERIFY_CODE = 62

_UNREACHABLE_ERRNOS = frozenset({errno.ENETUNREACH, errno.EHOSTUNREACH})
_EXHAUSTED_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE})


def categorize(exc: BaseException) -> FailureKind:
    """Fold a raised exception into a ``FailureKind``.

    Order matters: ``ssl.SSLError`` subclasses ``OSError`` and
    ``asyncio.IncompleteReadError`` subclasses ``EOFError``.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return FailureKind.TIMEOUT

    if isinstance(exc, ssl.SSLCertVerificationError):
        if getattr(exc, "verify_code", None) == HOSTNAME_MISMATCH_VERIFY_CODE:
            return FailureKind.CERT_MISMATCH
        return FailureKind.OTHER

    if isinstance(exc, (ssl.SSLEOFError, ssl.SSLZeroReturnError)):
        return FailureKind.END_OF_STREAM

    if isinstance(exc, ssl.SSLError):
        reason = getattr(exc, "reason", None)
        if reason in PROTOCOL_MISMATCH_REASONS:
            return FailureKind.PROTOCOL_MISMATCH
        return FailureKind.OTHER

    if isinstance(exc, EOFError):
        return FailureKind.END_OF_STREAM

    if isinstance(exc, ConnectionRefusedError):
        return FailureKind.REFUSED

    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return FailureKind.RESET

    if isinstance(exc, OSError):
        if exc.errno in _UNREACHABLE_ERRNOS:
            return FailureKind.UNREACHABLE
        if exc.errno in _EXHAUSTED_ERRNOS:
            return FailureKind.RESOURCE_EXHAUSTED
        if exc.errno == errno.ECONNREFUSED:
            return FailureKind.REFUSED
        if exc.errno == errno.ECONNRESET:
            return FailureKind.RESET

    return FailureKind.OTHER


def _outcome(
    stage: Stage,
    code: OutcomeCode,
    *,
    terminal: bool,
    disposition: Disposition,
) -> Outcome:
    return Outcome(stage=stage, code=code, terminal=terminal, disposition=disposition)


# Unclassified connect failures (e.g. EADDRNOTAVAIL) say nothing about the
# domain, so the next endpoint is tried.
_UNEXPECTED_TCP = _outcome(
    Stage.TCP, OutcomeCode.UNEXPECTED, terminal=False, disposition=Disposition.RELEASE
)
_UNEXPECTED_TLS = _outcome(
    Stage.TLS, OutcomeCode.UNEXPECTED, terminal=True, disposition=Disposition.RELEASE
)

_TCP_OUTCOMES: dict[FailureKind, Outcome] = {
    FailureKind.TIMEOUT: _outcome(
        Stage.TCP, OutcomeCode.TIMEOUT, terminal=False, disposition=Disposition.COOLDOWN
    ),
    FailureKind.REFUSED: _outcome(
        Stage.TCP, OutcomeCode.REFUSED, terminal=False, disposition=Disposition.EVICT
    ),
    FailureKind.UNREACHABLE: _outcome(
        Stage.TCP, OutcomeCode.UNREACHABLE, terminal=False, disposition=Disposition.EVICT
    ),
    FailureKind.RESET: _outcome(
        Stage.TCP, OutcomeCode.RST, terminal=False, disposition=Disposition.RELEASE
    ),
    FailureKind.END_OF_STREAM: _outcome(
        Stage.TCP, OutcomeCode.EOF, terminal=True, disposition=Disposition.RELEASE
    ),
}

_TLS_OUTCOMES: dict[FailureKind, Outcome] = {
    FailureKind.TIMEOUT: _outcome(
        Stage.TLS, OutcomeCode.TIMEOUT, terminal=True, disposition=Disposition.RELEASE
    ),
    FailureKind.RESET: _outcome(
        Stage.TLS, OutcomeCode.RST, terminal=True, disposition=Disposition.RESIDUAL
    ),
    FailureKind.END_OF_STREAM: _outcome(
        Stage.TLS, OutcomeCode.EOF, terminal=True, disposition=Disposition.RELEASE
    ),
    FailureKind.PROTOCOL_MISMATCH: _outcome(
        Stage.TLS,
        OutcomeCode.TLS_RECORD_HEADER_ERROR,
        terminal=False,
        disposition=Disposition.EVICT,
    ),
    FailureKind.CERT_MISMATCH: _outcome(
        Stage.TLS,
        OutcomeCode.X509_HOSTNAME_ERROR,
        terminal=True,
        disposition=Disposition.EVICT,
    ),
}

_TLS_SUCCESS = _outcome(
    Stage.TLS, OutcomeCode.SUCCESS, terminal=True, disposition=Disposition.RELEASE
)


def classify(stage: Stage, kind: FailureKind | None) -> Outcome:
    """Map a failure kind observed at *stage* to an ``Outcome``.

    ``kind=None`` means the stage completed without error, which is only
    meaningful for the TLS stage (a finished handshake).

    Raises
    ------
    ResourceExhaustedError
        For ``FailureKind.RESOURCE_EXHAUSTED`` at any stage.
    ValueError
        For ``kind=None`` at the TCP stage.
    """
    if kind is FailureKind.RESOURCE_EXHAUSTED:
        raise ResourceExhaustedError(stage=stage.value, code=OutcomeCode.TOO_MANY_FILES.value)

    if stage is Stage.TCP:
        if kind is None:
            raise ValueError("A completed TCP connect is not an outcome")
        return _TCP_OUTCOMES.get(kind, _UNEXPECTED_TCP)

    if kind is None:
        return _TLS_SUCCESS
    return _TLS_OUTCOMES.get(kind, _UNEXPECTED_TLS)


def classify_error(stage: Stage, exc: BaseException) -> Outcome:
    """Shortcut for ``classify(stage, categorize(exc))``."""
    return classify(stage, categorize(exc))
