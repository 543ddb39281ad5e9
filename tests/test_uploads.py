import os
import re

import pytest

import uploads


@pytest.mark.parametrize("original, cleaned", [
    ("photo.png", "photo"),
    ("  my   holiday photo!.JPG", "my_holiday_photo"),
    ("résumé scan.jpeg", "r_sum_scan"),
    ("___weird__name___.gif", "weird_name"),
    ("###.webp", "image"),
])
def test_clean_filename(original, cleaned):
    assert uploads.clean_filename(original) == cleaned


def test_stored_filename_is_timestamp_prefixed():
    name = uploads.stored_filename("My Photo.PNG")
    assert re.fullmatch(r"\d{13}_My_Photo\.png", name)


def test_delete_image_ignores_external_urls():
    assert uploads.delete_image("https://cdn.example.com/a.png") is False
    assert uploads.delete_image(None) is False


def test_delete_image_removes_uploaded_file():
    uploads.ensure_uploads_dir()
    path = os.path.join(uploads.UPLOADS_DIR, "123_old.png")
    with open(path, "wb") as f:
        f.write(b"png")
    assert uploads.delete_image("/uploads/123_old.png") is True
    assert not os.path.exists(path)
    assert uploads.delete_image("/uploads/123_old.png") is False
