import pytest

from nodestats.metrics import MetricRepresentation, MetricsError
from nodestats.prometheus import get_float64_metric, parse_prometheus_metrics

SAMPLE_METRICS = """\
# HELP disk_avg_queue_len The average queue length on the disk
# TYPE disk_avg_queue_len gauge
disk_avg_queue_len{device="sda1"} 0.0125
disk_avg_queue_len{device="sda8"} 0
# HELP host_uptime The uptime of the operating system
# TYPE host_uptime gauge
host_uptime{kernel_version="4.14.127+",os_version="cos 73-11647.217.0"} 3504
# HELP problem_counter Number of times a specific type of problem have occurred.
# TYPE problem_counter counter
problem_counter{reason="DockerHung"} 0
problem_counter{reason="OOMKilling"} 2
"""

CASES = [
    (
        "Relaxed label matching",
        [
            ("host_uptime", {}),
            ("host_uptime", {"kernel_version": "4.14.127+"}),
            ("disk_avg_queue_len", {"device": "sda1"}),
            ("disk_avg_queue_len", {"device": "sda8"}),
        ],
        [
            ("host_uptime", {"non-existant-version": "0.0.1"}),
            ("host_uptime", {"kernel_version": "mismatched-version"}),
            ("host_downtime", {}),
        ],
        False,
    ),
    (
        "Strict label matching",
        [
            ("host_uptime", {"kernel_version": "4.14.127+", "os_version": "cos 73-11647.217.0"}),
            ("problem_counter", {"reason": "DockerHung"}),
            ("problem_counter", {"reason": "OOMKilling"}),
        ],
        [
            ("host_uptime", {"kernel_version": "4.14.127+"}),
            ("host_uptime", {}),
            ("host_uptime", {"non-existant-version": "0.0.1"}),
            ("host_uptime", {"kernel_version": "mismatched-version"}),
            ("host_downtime", {}),
        ],
        True,
    ),
]


@pytest.mark.parametrize(
    "expected,not_expected,strict", [case[1:] for case in CASES], ids=[case[0] for case in CASES]
)
def test_parsing_and_matching(expected, not_expected, strict):
    metrics = parse_prometheus_metrics(SAMPLE_METRICS)
    for name, labels in expected:
        found = get_float64_metric(metrics, name, labels, strict)
        assert found.name == name
    for name, labels in not_expected:
        with pytest.raises(MetricsError):
            get_float64_metric(metrics, name, labels, strict)


def test_parsed_values():
    metrics = parse_prometheus_metrics(SAMPLE_METRICS)
    found = get_float64_metric(metrics, "problem_counter", {"reason": "OOMKilling"}, True)
    assert found == MetricRepresentation("problem_counter", {"reason": "OOMKilling"}, 2.0)
    uptime = get_float64_metric(metrics, "host_uptime", {}, False)
    assert uptime.value == 3504.0
    assert uptime.labels["os_version"] == "cos 73-11647.217.0"


def test_carriage_returns_are_ignored():
    text = SAMPLE_METRICS.replace("\n", "\r\n")
    assert parse_prometheus_metrics(text) == parse_prometheus_metrics(SAMPLE_METRICS)


def test_escaped_label_value():
    metrics = parse_prometheus_metrics('# TYPE foo gauge\nfoo{msg="a \\"b\\"\\\\c"} 1 1600000000\n')
    assert metrics[0].labels == {"msg": 'a "b"\\c'}


def test_untyped_metric_is_rejected():
    with pytest.raises(MetricsError, match="UNTYPED"):
        parse_prometheus_metrics("foo 1\n")


def test_summary_metric_is_rejected():
    text = '# TYPE rpc summary\nrpc{quantile="0.5"} 1\nrpc_sum 3\nrpc_count 2\n'
    with pytest.raises(MetricsError, match="SUMMARY"):
        parse_prometheus_metrics(text)


def test_malformed_line_is_rejected():
    with pytest.raises(MetricsError):
        parse_prometheus_metrics('# TYPE foo gauge\nfoo{a="1" 2\n')


def test_bad_value_is_rejected():
    with pytest.raises(MetricsError):
        parse_prometheus_metrics("# TYPE foo gauge\nfoo abc\n")


def test_empty_text_gives_no_metrics():
    assert parse_prometheus_metrics("") == []