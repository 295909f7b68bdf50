"""Tests for batch report generation."""

import pandas as pd

from delivery.reporting import DeliveryReporter, generate_report


def _frame():
    return pd.DataFrame([
        {"filename": "a.wav", "success": True, "overall_score": 82, "emotional_feedback": "excellent",
         "words_per_minute": 140, "volume_score": 90, "speechRate_score": 80, "pauses_score": 75,
         "latency_score": 100, "endIntensity_score": 50},
        {"filename": "b.wav", "success": True, "overall_score": 55, "emotional_feedback": "good",
         "words_per_minute": 95, "volume_score": 60, "speechRate_score": 40, "pauses_score": 70,
         "latency_score": 80, "endIntensity_score": 60},
        {"filename": "c.wav", "success": False, "error": "unreadable"},
    ])


def test_summary_report_counts_scored_files(tmp_path):
    text = DeliveryReporter(_frame(), str(tmp_path)).generate_summary_report()

    assert "Total files: 3" in text
    assert "Scored:      2" in text
    assert "Excellent  1 (50.0%)" in text
    assert (tmp_path / "summary_report.txt").exists()


def test_generate_report_from_csv(tmp_path):
    csv_path = tmp_path / "scores.csv"
    _frame().to_csv(csv_path, index=False)
    out = tmp_path / "reports"

    generate_report(str(csv_path), str(out))

    for name in ("overall_distribution.png", "metric_scores.png", "rate_vs_score.png",
                 "correlation_matrix.png", "summary_report.txt"):
        assert (out / name).exists()


def test_empty_frame_skips_plots(tmp_path):
    reporter = DeliveryReporter(pd.DataFrame(), str(tmp_path))
    assert reporter.plot_overall_distribution() is None
    assert reporter.plot_correlation_matrix() is None
