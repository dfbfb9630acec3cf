import unittest

from wgexporter.exposition import escape_label_value, format_sample, format_value, render
from wgexporter.models import MetricKind, MetricSample


def gauge(name, value, labels=None, help="help text"):
    return MetricSample(name=name, value=value, labels=labels or {}, help=help)


class TestFormatSample(unittest.TestCase):
    def test_without_labels(self):
        self.assertEqual(format_sample(gauge("wireguard_interfaces_total", 0)), "wireguard_interfaces_total 0")

    def test_label_order_preserved(self):
        sample = gauge("m", 1, {"interface": "wg0", "public_key": "abcdefgh", "endpoint": "1.2.3.4:51820"})
        self.assertEqual(
            format_sample(sample),
            'm{interface="wg0",public_key="abcdefgh",endpoint="1.2.3.4:51820"} 1',
        )

    def test_label_escaping(self):
        self.assertEqual(escape_label_value('a"b\\c\nd'), 'a\\"b\\\\c\\nd')
        sample = gauge("m", 1, {"interface": 'we"ird'})
        self.assertEqual(format_sample(sample), 'm{interface="we\\"ird"} 1')

    def test_values(self):
        self.assertEqual(format_value(1000), "1000")
        self.assertEqual(format_value(2.0), "2")
        self.assertEqual(format_value(0.25), "0.25")
        self.assertEqual(format_value(True), "1")
        self.assertEqual(format_value(float("inf")), "+Inf")
        self.assertEqual(format_value(float("nan")), "NaN")
        self.assertEqual(format_value(18446744073709551615), "18446744073709551615")


class TestRender(unittest.TestCase):
    def setUp(self):
        self.samples = [
            gauge("wg_interface_up", 1, {"interface": "wg0"}, "Interface status"),
            gauge("wg_interface_up", 0, {"interface": "wg1"}, "Interface status"),
            MetricSample(name="wg_rx_total", value=5, labels={"interface": "wg0"},
                         help="Bytes", kind=MetricKind.COUNTER),
            gauge("wg_interface_up", 1, {"interface": "wg2"}, "Interface status"),
            MetricSample(name="wg_rx_total", value=7, labels={"interface": "wg1"},
                         help="Bytes", kind=MetricKind.COUNTER),
        ]

    def test_single_declaration_per_name(self):
        text = render(self.samples)
        self.assertEqual(text.count("# HELP wg_interface_up "), 1)
        self.assertEqual(text.count("# TYPE wg_interface_up gauge"), 1)
        self.assertEqual(text.count("# HELP wg_rx_total "), 1)
        self.assertEqual(text.count("# TYPE wg_rx_total counter"), 1)

    def test_grouping_and_order(self):
        self.assertEqual(render(self.samples), "\n".join([
            "# HELP wg_interface_up Interface status",
            "# TYPE wg_interface_up gauge",
            'wg_interface_up{interface="wg0"} 1',
            'wg_interface_up{interface="wg1"} 0',
            'wg_interface_up{interface="wg2"} 1',
            "# HELP wg_rx_total Bytes",
            "# TYPE wg_rx_total counter",
            'wg_rx_total{interface="wg0"} 5',
            'wg_rx_total{interface="wg1"} 7',
        ]) + "\n")

    def test_declaration_precedes_samples(self):
        lines = render(self.samples).splitlines()
        for name in ("wg_interface_up", "wg_rx_total"):
            header = lines.index(f"# TYPE {name} " + ("gauge" if name == "wg_interface_up" else "counter"))
            first_sample = next(i for i, line in enumerate(lines) if line.startswith(name))
            self.assertLess(header, first_sample)

    def test_idempotent(self):
        self.assertEqual(render(self.samples), render(self.samples))

    def test_empty(self):
        self.assertEqual(render([]), "")

    def test_help_escaping(self):
        text = render([gauge("m", 1, help="line\\one\ntwo")])
        self.assertIn("# HELP m line\\\\one\\ntwo\n", text)


if __name__ == "__main__":
    unittest.main()
