"""Image reference parsing."""

DEFAULT_TAG = "latest"
OFFICIAL_NAMESPACE = "library"


def parse_image_reference(reference: str) -> tuple[str, str]:
    """이미지 참조 문자열을 이름과 태그로 분리합니다.

    Args:
        reference: 이미지 참조
            - 예: "busybox:1.36", "ubuntu"
            - 레지스트리 포트 포함: "localhost:5000/myapp:latest"

    Returns:
        tuple[str, str]: (이미지 이름, 태그) 튜플

    Examples:
        parse_image_reference("busybox:1.36")
        # 결과: ("busybox", "1.36")

        parse_image_reference("localhost:5000/myapp")
        # 결과: ("localhost:5000/myapp", "latest")
    """
    name, sep, tag = reference.rpartition(":")
    # A colon inside the last path component separates the tag; otherwise
    # it belongs to a registry host:port.
    if not sep or "/" in tag:
        return reference, DEFAULT_TAG
    if not tag:
        return name, DEFAULT_TAG
    return name, tag


def normalize_repository_name(name: str) -> str:
    """Prefix single-component names with the official namespace."""
    name = name.strip("/")
    if "/" not in name:
        return f"{OFFICIAL_NAMESPACE}/{name}"
    return name
