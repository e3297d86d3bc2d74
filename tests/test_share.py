import pytest

from checkin.share import qr_image_url, share_target

PUBLIC = "https://queue.example.org/"


@pytest.mark.parametrize(
    "request_url",
    [None, "", "http://localhost:5173/", "http://127.0.0.1:8000/queue", "http://[::1]:8000/"],
)
def test_loopback_requests_share_public_url(request_url):
    assert share_target(request_url, PUBLIC) == PUBLIC


def test_public_requests_share_themselves():
    assert share_target("https://event.example.com/join", PUBLIC) == "https://event.example.com/join"


def test_qr_image_url_encodes_target():
    url = qr_image_url("https://event.example.com/join?x=1&y=2", size=200)
    assert url.startswith("https://api.qrserver.com/v1/create-qr-code/?size=200x200&data=")
    assert "https%3A%2F%2Fevent.example.com%2Fjoin%3Fx%3D1%26y%3D2" in url


def test_qr_image_url_rejects_bad_size():
    with pytest.raises(ValueError):
        qr_image_url(PUBLIC, size=0)
