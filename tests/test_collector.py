import unittest

from fakes import NOW, OTHER_KEY, FakeStateSource, make_config, peer_line, wg0_outputs

from wgexporter.collector import WireGuardCollector
from wgexporter.executor import CommandTimeout, ExecError, ExecErrorReason
from wgexporter.state import PeerSnapshotStore


def make_collector(outputs=None, errors=None, **config):
    source = FakeStateSource(wg0_outputs() if outputs is None else outputs, errors)
    return WireGuardCollector(make_config(**config), source=source, clock=lambda: NOW), source


class TestCollect(unittest.TestCase):
    def test_single_peer_scenario(self):
        collector, _ = make_collector()
        text = collector.collect()

        labels = 'interface="wg0",public_key="abcdefgh",endpoint="1.2.3.4:51820"'
        self.assertIn(f"wireguard_peer_connected{{{labels}}} 1\n", text)
        self.assertIn(f"wireguard_peer_receive_bytes_total{{{labels}}} 1000\n", text)
        self.assertIn(f"wireguard_peer_transmit_bytes_total{{{labels}}} 2000\n", text)
        self.assertIn(f"wireguard_peer_allowed_ips_count{{{labels}}} 1\n", text)
        self.assertIn(f"wireguard_peer_persistent_keepalive_interval{{{labels}}} 25\n", text)
        self.assertIn(f"wireguard_peer_latest_handshake_seconds{{{labels}}} {NOW - 10}\n", text)
        self.assertIn("wireguard_interfaces_total 1\n", text)
        self.assertIn('wireguard_interface_up{interface="wg0"} 1\n', text)
        self.assertIn('wireguard_interface_listen_port{interface="wg0"} 51820\n', text)
        self.assertIn('wireguard_interface_peers{interface="wg0"} 1\n', text)
        self.assertIn('wireguard_version_info{version="v1.0.20210914"} 1\n', text)
        self.assertTrue(text.startswith("# WireGuard VPN Metrics\n# Generated at "))

    def test_zero_interfaces(self):
        outputs = wg0_outputs()
        outputs[("wg", "show", "interfaces")] = "\n"
        collector, _ = make_collector(outputs)
        text = collector.collect()

        self.assertIn("wireguard_interfaces_total 0\n", text)
        self.assertNotIn("peer_", text)
        self.assertNotIn("interface_up", text)

    def test_permission_denied_discovery(self):
        error = ExecError(ExecErrorReason.PERMISSION_DENIED, ["wg", "show", "interfaces"], "Operation not permitted")
        collector, _ = make_collector(errors={("wg", "show", "interfaces"): error})
        text = collector.collect()

        self.assertIn("# Error collecting metrics: permission_denied\n", text)
        self.assertIn("wireguard_interfaces_total 0\n", text)
        self.assertEqual(collector.collection_errors, 1)

    def test_configured_interface_skips_discovery(self):
        collector, source = make_collector(interface="wg0")
        collector.collect()
        self.assertNotIn(("wg", "show", "interfaces"), source.calls)

    def test_failed_interface_does_not_abort_others(self):
        outputs = wg0_outputs()
        outputs[("wg", "show", "interfaces")] = "wg9 wg0\n"
        collector, _ = make_collector(outputs)
        samples, comments = collector.collect_samples()

        names = {s.labels.get("interface") for s in samples if s.name == "wireguard_interface_up"}
        self.assertEqual(names, {"wg0"})
        total = next(s for s in samples if s.name == "wireguard_interfaces_total")
        self.assertEqual(total.value, 2)
        self.assertEqual(comments, ["# Error collecting interface wg9: non_zero_exit"])
        self.assertEqual(collector.collection_errors, 1)

    def test_discovery_order_is_kept(self):
        outputs = wg0_outputs()
        outputs[("wg", "show", "interfaces")] = "wg1 wg0\n"
        for suffix in ("listen-port", "peers", "dump"):
            outputs[("wg", "show", "wg1", suffix)] = outputs[("wg", "show", "wg0", suffix)]
        outputs[("ip", "link", "show", "wg1")] = ""
        collector, _ = make_collector(outputs)

        lines = [line for line in collector.collect().splitlines() if line.startswith("wireguard_interface_up")]
        self.assertEqual(lines, [
            'wireguard_interface_up{interface="wg1"} 1',
            'wireguard_interface_up{interface="wg0"} 1',
        ])

    def test_link_down(self):
        outputs = wg0_outputs()
        del outputs[("ip", "link", "show", "wg0")]
        collector, _ = make_collector(outputs)
        self.assertIn('wireguard_interface_up{interface="wg0"} 0\n', collector.collect())

    def test_malformed_lines_counted(self):
        outputs = wg0_outputs(peer_line(), "short\tline", peer_line(key=OTHER_KEY, handshake=0))
        collector, _ = make_collector(outputs)
        text = collector.collect()

        self.assertIn('public_key="zyxwvuts",endpoint="1.2.3.4:51820"} 0\n', text)
        self.assertEqual(collector.parse_errors, 1)

    def test_single_declaration_across_peers(self):
        outputs = wg0_outputs(peer_line(), peer_line(key=OTHER_KEY))
        collector, _ = make_collector(outputs)
        text = collector.collect()
        self.assertEqual(text.count("# HELP wireguard_peer_connected "), 1)
        self.assertEqual(text.count("# TYPE wireguard_peer_receive_bytes_total counter"), 1)

    def test_custom_prefix(self):
        collector, _ = make_collector(metrics_prefix="vpn")
        text = collector.collect()
        self.assertIn("vpn_interfaces_total 1\n", text)
        self.assertNotIn("wireguard_", text)

    def test_missing_version_is_skipped(self):
        outputs = wg0_outputs()
        del outputs[("wg", "--version")]
        collector, _ = make_collector(outputs)
        self.assertNotIn("version_info", collector.collect())

    def test_timeout_propagates(self):
        timeout = CommandTimeout(["wg", "show", "wg0", "dump"], 5)
        collector, _ = make_collector(errors={("wg", "show", "wg0", "dump"): timeout})
        with self.assertRaises(CommandTimeout):
            collector.collect()


class TestExtendedMetrics(unittest.TestCase):
    def test_disabled(self):
        collector, _ = make_collector(enable_extended_metrics=False)
        text = collector.collect()
        self.assertNotIn("collection_errors_total", text)
        self.assertNotIn("scrape_duration_seconds", text)

    def test_enabled(self):
        collector, _ = make_collector(enable_extended_metrics=True)
        text = collector.collect()
        self.assertIn("# TYPE wireguard_collection_errors_total counter\n", text)
        self.assertIn("wireguard_collection_errors_total 0\n", text)
        self.assertIn("wireguard_parse_errors_total 0\n", text)
        self.assertIn("wireguard_scrape_duration_seconds ", text)
        # No previous snapshot yet
        self.assertNotIn("bytes_per_second", text)

    def test_rates_on_second_scrape(self):
        clock = [NOW]
        source = FakeStateSource(wg0_outputs(peer_line(rx=1000, tx=2000)))
        collector = WireGuardCollector(make_config(enable_extended_metrics=True), source=source,
                                       clock=lambda: clock[0], snapshots=PeerSnapshotStore())
        collector.collect()

        clock[0] = NOW + 10
        source.outputs.update(wg0_outputs(peer_line(rx=2000, tx=2500)))
        text = collector.collect()

        labels = 'interface="wg0",public_key="abcdefgh",endpoint="1.2.3.4:51820"'
        self.assertIn(f"wireguard_peer_receive_bytes_per_second{{{labels}}} 100\n", text)
        self.assertIn(f"wireguard_peer_transmit_bytes_per_second{{{labels}}} 50\n", text)

    def test_removed_peer_snapshot_dropped(self):
        snapshots = PeerSnapshotStore()
        source = FakeStateSource(wg0_outputs(peer_line(), peer_line(key=OTHER_KEY, endpoint="(none)")))
        collector = WireGuardCollector(make_config(enable_extended_metrics=True), source=source,
                                       clock=lambda: NOW, snapshots=snapshots)
        collector.collect()
        self.assertEqual(len(snapshots), 2)

        source.outputs.update(wg0_outputs(peer_line()))
        collector.collect()
        self.assertEqual(len(snapshots), 1)


class TestHealthAndDiagnose(unittest.TestCase):
    def test_health_ok(self):
        collector, _ = make_collector()
        self.assertEqual(collector.check_health(), (True, "OK"))

    def test_health_failure(self):
        error = ExecError(ExecErrorReason.PERMISSION_DENIED, ["wg", "show", "interfaces"])
        collector, _ = make_collector(errors={("wg", "show", "interfaces"): error})
        ok, message = collector.check_health()
        self.assertFalse(ok)
        self.assertIn("permission_denied", message)

    def test_diagnose_reports_interfaces(self):
        outputs = wg0_outputs()
        outputs[("wg", "show")] = "interface: wg0\n"
        collector, _ = make_collector(outputs, state_file="/tmp/wgexporter-test/state")
        checks = dict((message, ok) for ok, message in collector.diagnose())

        self.assertTrue(checks["Can execute 'wg show'"])
        self.assertTrue(checks["Found WireGuard interface(s): wg0"])
        self.assertTrue(checks["Interface wg0 has 1 peer(s)"])
        self.assertTrue(checks["WireGuard version: v1.0.20210914"])


if __name__ == "__main__":
    unittest.main()
