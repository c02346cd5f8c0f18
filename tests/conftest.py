import sys
import json
import pathlib
import threading
import time

import pytest

# Ensure project root is on sys.path so 'import stackaudit' works when pytest runs from
# different working directories or when running individual tests.
_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from stackaudit import create_app
from stackaudit.exceptions import AnalyzerCancelled, AnalyzerTimeout
from stackaudit.logging_utils import reset_suppressed_state
from stackaudit.settings import Settings


class FakeTransport:
    """Stands in for the analyzer HTTP call: returns ``reply`` or raises ``exc``.

    With ``block`` set, the call waits on that event first (released by the
    test) so timeouts and cancellation can be exercised without sleeping.
    While blocked it gives up the way the real transport does: on the
    call's cancel token or once its deadline passes. ``finished`` collects
    how each call ended ('replied', 'raised', 'cancelled' or 'timeout').
    """

    def __init__(self, reply=None, exc=None, block=None):
        self.reply = reply
        self.exc = exc
        self.block = block
        self.calls = []
        self.finished = []
        self.started = threading.Event()

    def __call__(self, request, deadline, token):
        self.calls.append((request, deadline, token))
        self.started.set()
        outcome = 'raised'
        try:
            while self.block is not None and not self.block.wait(0.01):
                if token.cancelled:
                    outcome = 'cancelled'
                    raise AnalyzerCancelled()
                if time.monotonic() >= deadline:
                    outcome = 'timeout'
                    raise AnalyzerTimeout(0)
            if self.exc is not None:
                raise self.exc
            outcome = 'replied'
            return self.reply
        finally:
            self.finished.append(outcome)


def ai_reply(*plugins, platform='unknown'):
    return json.dumps({'platform': platform, 'detectedPlugins': list(plugins)})


def ai_plugin(name, category='other', confidence='medium', **extra):
    entry = {'name': name, 'category': category, 'confidence': confidence,
             'riskLevel': 'low', 'performanceImpact': 'low', 'description': f'{name} detected'}
    entry.update(extra)
    return entry


@pytest.fixture(autouse=True)
def _reset_suppressed_logs():
    reset_suppressed_state()
    yield
    reset_suppressed_state()


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def reply():
    return ai_reply


@pytest.fixture
def plugin():
    return ai_plugin


@pytest.fixture
def wordpress_html():
    """WordPress page with six distinct plugin asset paths."""
    return (
        '<!DOCTYPE html><html><head><title>Shop</title>\n'
        '<link rel="stylesheet" href="/wp-content/plugins/contact-form-7/includes/css/styles.css?ver=5.8.4">\n'
        '<script src="/wp-content/plugins/wordpress-seo/js/dist/schema.js"></script>\n'
        '<script src="/wp-content/plugins/wp-rocket/assets/js/lazyload.min.js?ver=3.15.2"></script>\n'
        '<script src="/wp-content/plugins/wordfence/js/admin.js"></script>\n'
        '<script src="/wp-content/plugins/woocommerce/assets/js/frontend/cart.js?ver=8.3.1"></script>\n'
        '<link rel="stylesheet" href="/wp-content/plugins/updraftplus/css/notice.css">\n'
        '</head><body><main><h1>Welcome to the shop</h1><p>Fresh coffee beans.</p></main></body></html>'
    )


@pytest.fixture
def wordpress_bare_html():
    """Declared WordPress site with no detectable plugin."""
    return (
        '<!DOCTYPE html><html><head><title>Blog</title>\n'
        '<meta name="generator" content="WordPress 6.4.2">\n'
        '</head><body><article><h1>Hello world</h1><p>First post on a fresh install.</p></article></body></html>'
    )


@pytest.fixture
def shopify_html():
    """Shopify store with exactly three app asset paths."""
    return (
        '<!DOCTYPE html><html><head><title>Store</title>\n'
        '<script src="https://cdn.shopify.com/s/files/1/0001/theme.js"></script>\n'
        '<script src="https://static.klaviyo.com/onsite/js/onsite.js"></script>\n'
        '<script src="https://cdn.judge.me/widget_preloader.js"></script>\n'
        '<script src="https://cdn.aftership.com/tracking-page.js"></script>\n'
        '</head><body><h1>New arrivals</h1><p>Free delivery over 50.</p></body></html>'
    )


@pytest.fixture
def client():
    app = create_app(Settings(ai_enabled=False))
    app.testing = True
    return app.test_client()
