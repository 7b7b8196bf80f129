from io import BytesIO

from django.core.files.uploadedfile import SimpleUploadedFile
from PIL import Image


def make_image_bytes(left=255, right=0, size=(64, 64), fmt="PNG", mode="RGB"):
    """image whose left half is `left` and right half `right` (grey levels)"""
    width, height = size
    fill = (left,) * 3 if mode == "RGB" else left
    right_fill = (right,) * 3 if mode == "RGB" else right
    image = Image.new(mode, size, fill)
    image.paste(Image.new(mode, (width - width // 2, height), right_fill), (width // 2, 0))
    buf = BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


def cat_bytes(**kwargs):
    return make_image_bytes(left=255, right=0, **kwargs)


def dog_bytes(**kwargs):
    return make_image_bytes(left=0, right=255, **kwargs)


def upload(name, data, content_type="image/png"):
    return SimpleUploadedFile(name, data, content_type=content_type)
