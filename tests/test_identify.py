import unittest, pathlib, sys

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stackaudit.identify import generator_values, identify_platform, is_non_trivial, platform_from_generator
from stackaudit.models import Platform

FILLER = '<p>' + 'Plain marketing copy about our products. ' * 10 + '</p>'


class TestGenerator(unittest.TestCase):
    def test_meta_generator_either_attribute_order(self):
        html = '<meta name="generator" content="Joomla! - Open Source Content Management">'
        self.assertEqual(generator_values(html), ['Joomla! - Open Source Content Management'])
        reversed_html = "<meta content='Drupal 10 (https://www.drupal.org)' name='generator'>"
        self.assertEqual(generator_values(reversed_html), ['Drupal 10 (https://www.drupal.org)'])

    def test_x_generator_header(self):
        self.assertEqual(generator_values('', {'x-generator': 'Drupal 9'}), ['Drupal 9'])

    def test_generator_tokens(self):
        self.assertEqual(platform_from_generator(['WooCommerce 8.2']), Platform.WORDPRESS)
        self.assertEqual(platform_from_generator(['Wix.com Website Builder']), Platform.WIX)
        self.assertIsNone(platform_from_generator(['Hugo 0.120']))


class TestIdentifyPlatform(unittest.TestCase):
    def test_generator_declaration_wins(self):
        # Shopify CDN marker present, but the explicit declaration decides
        html = '<meta name="generator" content="WordPress 6.4"><script src="https://cdn.shopify.com/x.js"></script>'
        self.assertEqual(identify_platform(html, {}), Platform.WORDPRESS)

    def test_wordpress_path_markers(self):
        html = '<link rel="stylesheet" href="/wp-content/themes/astra/style.css">'
        self.assertEqual(identify_platform(html, {}), Platform.WORDPRESS)

    def test_wordpress_checked_before_looser_markers(self):
        # '/components/com_' would also look like Joomla
        html = '<script src="/wp-includes/js/jquery.js"></script><a href="/components/com_content/">x</a>'
        self.assertEqual(identify_platform(html, {}), Platform.WORDPRESS)

    def test_header_markers(self):
        self.assertEqual(identify_platform('', {'x-drupal-cache': 'HIT'}), Platform.DRUPAL)
        self.assertEqual(identify_platform('', {'x-shopify-stage': 'production'}), Platform.SHOPIFY)
        self.assertEqual(identify_platform('', {'x-magento-tags': 'store'}), Platform.MAGENTO)

    def test_content_markers(self):
        cases = {
            '<script type="text/x-magento-init">{}</script>': Platform.MAGENTO,
            '<script>var prestashop = {};</script>': Platform.PRESTASHOP,
            '<img src="https://static.wixstatic.com/media/a.jpg">': Platform.WIX,
            '<link href="https://static1.squarespace.com/static/site.css">': Platform.SQUARESPACE,
            '<html data-wf-page="123" data-wf-site="456">': Platform.WEBFLOW,
            '<script src="/media/jui/js/jquery.min.js"></script>': Platform.JOOMLA,
        }
        for html, expected in cases.items():
            self.assertEqual(identify_platform(html, {}), expected, html)

    def test_custom_for_real_document_without_markers(self):
        html = '<html><head><title>Hand built</title></head><body>' + FILLER + '</body></html>'
        self.assertTrue(is_non_trivial(html))
        self.assertEqual(identify_platform(html, {}), Platform.CUSTOM)

    def test_unknown_for_trivial_input(self):
        self.assertEqual(identify_platform('', {}), Platform.UNKNOWN)
        self.assertEqual(identify_platform('<p>hi</p>', {}), Platform.UNKNOWN)
        # long but with no markup at all
        self.assertEqual(identify_platform('x' * 1000, {}), Platform.UNKNOWN)

    def test_total_for_odd_input(self):
        self.assertEqual(identify_platform(None, None), Platform.UNKNOWN)
        self.assertEqual(identify_platform(12345, ['not', 'a', 'mapping']), Platform.UNKNOWN)
        for html in ['<', '<meta name="generator">', '\x00' * 300]:
            self.assertIn(identify_platform(html, {}), list(Platform))


if __name__ == '__main__':
    unittest.main()
