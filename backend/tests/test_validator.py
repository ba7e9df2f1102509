import re

import pytest

from marketplace.services.validator import (
    IMAGES,
    MB,
    NFT_ASSETS,
    UploadCandidate,
    UploadPolicy,
    check_content,
    generate_secure_file_path,
    policy_for_category,
    sanitize_filename,
    validate_file_path,
    validate_upload,
)


def candidate(filename, content_type, size=1024):
    return UploadCandidate(filename=filename, content_type=content_type, size=size)


def test_valid_jpeg():
    result = validate_upload(candidate("photo.jpg", "image/jpeg", 5 * MB), IMAGES)
    assert result.is_valid is True
    assert result.sanitized_filename == "photo.jpg"
    assert result.mime_type == "image/jpeg"
    assert result.size == 5 * MB


def test_rejects_oversized_file():
    result = validate_upload(candidate("photo.jpg", "image/jpeg", 11 * MB), IMAGES)
    assert result.is_valid is False
    assert "10MB" in result.error


def test_rejects_unknown_type():
    result = validate_upload(candidate("script.sh", "text/x-shellscript"), IMAGES)
    assert result.is_valid is False
    assert "not allowed" in result.error.lower()


def test_rejects_spoofed_executable():
    result = validate_upload(candidate("malware.jpg.exe", "image/jpeg"), IMAGES)
    assert result.is_valid is False


def test_rejects_extension_outside_policy():
    result = validate_upload(candidate("photo.mp4", "image/jpeg"), IMAGES)
    assert result.is_valid is False
    assert "extension" in result.error.lower()


def test_rejects_missing_size():
    result = validate_upload(UploadCandidate("photo.jpg", "image/jpeg", None), IMAGES)
    assert result.is_valid is False


def test_rejects_dangerous_name_even_if_policy_allows_it():
    policy = UploadPolicy.custom(10 * MB, ["image/jpeg"], [".php", "jpg"])
    result = validate_upload(candidate("shell.php", "image/jpeg"), policy)
    assert result.is_valid is False
    assert result.error == "File type not allowed for security reasons"


def test_rejects_hidden_file():
    result = validate_upload(candidate(".hidden.png", "image/png"), IMAGES)
    assert result.is_valid is False
    assert result.error == "Hidden files are not allowed"


def test_rejects_double_extension():
    result = validate_upload(candidate("photo.exe.jpg", "image/jpeg"), IMAGES)
    assert result.is_valid is False
    assert result.error == "Suspicious file extension detected"


def test_image_cap_applies_under_larger_policy():
    result = validate_upload(candidate("art.png", "image/png", 20 * MB), NFT_ASSETS)
    assert result.is_valid is False
    assert result.error == "Image file too large (max 10MB)"


def test_pdf_cap():
    result = validate_upload(candidate("doc.pdf", "application/pdf", 30 * MB), NFT_ASSETS)
    assert result.error == "PDF file too large (max 25MB)"


def test_video_cap():
    policy = UploadPolicy.custom(500 * MB, ["video/mp4"], ["mp4"])
    result = validate_upload(candidate("clip.mp4", "video/mp4", 150 * MB), policy)
    assert result.error == "Video file too large (max 100MB)"


def test_nft_assets_accept_video():
    result = validate_upload(candidate("clip.mp4", "video/mp4", 40 * MB), NFT_ASSETS)
    assert result.is_valid is True


@pytest.mark.parametrize(
    "category, expected",
    [("avatar", IMAGES), ("banner", IMAGES), ("nft", NFT_ASSETS), (None, IMAGES), ("other", IMAGES)],
)
def test_policy_for_category(category, expected):
    assert policy_for_category(category) is expected


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("../../etc/passwd", "_._etc_passwd"),
        ("mi foto (1).png", "mi_foto_1_.png"),
        ("...", "file"),
        ("", "file"),
        ("a..b.png", "a.b.png"),
    ],
)
def test_sanitize_filename(filename, expected):
    assert sanitize_filename(filename) == expected


def test_sanitize_truncates_keeping_extension():
    result = sanitize_filename("a" * 150 + ".png")
    assert len(result) == 100
    assert result.endswith(".png")


def test_generate_secure_file_path():
    path = generate_secure_file_path("user-1", "my photo.png", "avatar")
    assert re.fullmatch(r"avatar/user-1/\d+-[0-9a-f]{12}-my_photo.png", path)
    assert generate_secure_file_path("user-1", "my photo.png", "avatar") != path


@pytest.mark.parametrize(
    "path, error",
    [
        ("../etc/passwd", "Invalid file path"),
        ("/etc/passwd", "Invalid file path"),
        ("~/secret", "Invalid file path"),
        ("C:\\windows", "Absolute paths not allowed"),
        ("a" * 256, "File path too long"),
    ],
)
def test_validate_file_path_rejects(path, error):
    assert validate_file_path(path) == (False, error)


def test_validate_file_path_accepts_generated_path():
    assert validate_file_path(generate_secure_file_path("user-1", "x.png")) == (True, "")


def test_check_content_accepts_real_png(png_bytes):
    assert check_content("image/png", png_bytes) == ""


def test_check_content_rejects_executable_disguised_as_png():
    head = b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff" + b"\x00" * 64
    error = check_content("image/png", head)
    assert "does not match" in error


def test_check_content_rejects_empty():
    assert check_content("image/png", b"") == "File is empty"


def test_check_content_accepts_glb_signature():
    head = b"glTF" + (2).to_bytes(4, "little") + (1024).to_bytes(4, "little") + b"\x00" * 20
    assert check_content("model/gltf-binary", head) == ""


def test_check_content_rejects_unrecognised_binary_as_glb():
    head = bytes(range(7, 64))
    assert "does not match" in check_content("model/gltf-binary", head)
