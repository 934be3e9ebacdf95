from .models import AcquisitionStatus


class AcquisitionError(Exception):
    """
    元数据获取过程中所有可预期错误的基类。
    status 为该错误对应的终止状态。
    """
    status = AcquisitionStatus.ERROR
    kind = "ERROR"


class ProtocolViolation(AcquisitionError):
    """对端违反握手或扩展协议，本次尝试不再对该 peer 重试。"""
    status = AcquisitionStatus.PEER_MISMATCH
    kind = "PROTOCOL_VIOLATION"


class HandshakeRejected(ProtocolViolation):
    pass


class OversizeMetadata(ProtocolViolation):
    kind = "OVERSIZE_METADATA"


class PeerRejected(ProtocolViolation):
    kind = "PEER_REJECTED"


class HashMismatch(ProtocolViolation):
    kind = "HASH_MISMATCH"


class DecodeError(AcquisitionError):
    kind = "DECODE_ERROR"


class AdmissionRejected(AcquisitionError):
    status = AcquisitionStatus.REJECTED
    kind = "REJECTED_ADMISSION"


class InvalidInfoHash(AcquisitionError, ValueError):
    kind = "INVALID_INFO_HASH"
