"""
Reporting and Visualization Module
==================================

Figures and a text summary for batch delivery scores.

Features:
- Overall score distribution with tier bands
- Per-metric score box plots
- Speaking rate vs overall score
- Metric correlation matrix
- Plain-text summary report
"""

import pandas as pd
import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
from pathlib import Path
import logging
from datetime import datetime

from .config import DEFAULT_CONFIG

logger = logging.getLogger(__name__)

plt.rcParams.update({
    'figure.figsize': (12, 8),
    'figure.dpi': 100,
    'savefig.dpi': 150,
    'font.size': 12,
    'axes.labelsize': 14,
    'axes.titlesize': 16,
    'legend.fontsize': 11,
    'axes.grid': True,
    'grid.alpha': 0.3
})

METRIC_SCORE_COLUMNS = [
    ('volume_score', 'Volume'),
    ('speechRate_score', 'Speech Rate'),
    ('pauses_score', 'Pauses'),
    ('latency_score', 'Latency'),
    ('endIntensity_score', 'End Intensity'),
]


class DeliveryReporter:
    """
    Generate figures and a summary report from batch results.
    """
    
    def __init__(self, results_df: pd.DataFrame, output_dir: str = "reports"):
        """
        Initialize reporter.
        
        Args:
            results_df: DataFrame produced by BatchAnalyzer
            output_dir: Output directory for reports
        """
        self.df = results_df
        if 'success' in self.df.columns:
            self.scored = self.df[self.df['success'] == True]
        else:
            self.scored = self.df
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        
        self.colors = sns.color_palette("husl", 8)
        sns.set_style("whitegrid")
    
    def _save(self, fig: plt.Figure, name: str):
        save_path = self.output_dir / name
        fig.savefig(save_path, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Saved: {save_path}")
    
    # =========================================================================
    # PLOTS
    # =========================================================================
    
    def plot_overall_distribution(self, save: bool = True) -> plt.Figure:
        """
        Histogram of overall scores with tier boundaries.
        """
        if 'overall_score' not in self.scored.columns or self.scored.empty:
            logger.warning("No overall scores to plot")
            return None
        
        engine = DEFAULT_CONFIG.engine
        data = self.scored['overall_score'].dropna()
        
        fig, ax = plt.subplots(figsize=(10, 6))
        sns.histplot(data, bins=20, binrange=(0, 100), ax=ax, color=self.colors[0])
        
        ax.axvline(engine.GOOD_SCORE, color='orange', linestyle='--',
                   label=f'Good ({engine.GOOD_SCORE})')
        ax.axvline(engine.EXCELLENT_SCORE, color='green', linestyle='--',
                   label=f'Excellent ({engine.EXCELLENT_SCORE})')
        
        ax.set_xlabel('Overall Score')
        ax.set_ylabel('Count')
        ax.set_title('Overall Delivery Scores')
        ax.legend()
        
        if save:
            self._save(fig, "overall_distribution.png")
        return fig
    
    def plot_metric_scores(self, save: bool = True) -> plt.Figure:
        """
        Box plot of each metric score.
        """
        columns = [(col, label) for col, label in METRIC_SCORE_COLUMNS
                   if col in self.scored.columns]
        if not columns or self.scored.empty:
            return None
        
        long_df = pd.concat([
            pd.DataFrame({'metric': label, 'score': self.scored[col]})
            for col, label in columns
        ], ignore_index=True)
        
        fig, ax = plt.subplots(figsize=(12, 6))
        sns.boxplot(data=long_df, x='metric', y='score', ax=ax)
        sns.stripplot(data=long_df, x='metric', y='score', ax=ax,
                      alpha=0.5, size=4, color='black')
        
        ax.set_ylim(-5, 105)
        ax.set_xlabel('')
        ax.set_ylabel('Score')
        ax.set_title('Per-Metric Scores')
        
        if save:
            self._save(fig, "metric_scores.png")
        return fig
    
    def plot_rate_vs_score(self, save: bool = True) -> plt.Figure:
        """
        Speaking rate against overall score, colored by tier.
        """
        needed = {'words_per_minute', 'overall_score'}
        if not needed.issubset(self.scored.columns) or self.scored.empty:
            return None
        
        fig, ax = plt.subplots(figsize=(10, 6))
        sns.scatterplot(data=self.scored, x='words_per_minute', y='overall_score',
                        hue='emotional_feedback' if 'emotional_feedback' in self.scored.columns else None,
                        ax=ax)
        
        ax.set_xlabel('Words per Minute')
        ax.set_ylabel('Overall Score')
        ax.set_title('Speaking Rate vs Overall Score')
        
        if save:
            self._save(fig, "rate_vs_score.png")
        return fig
    
    def plot_correlation_matrix(self, save: bool = True) -> plt.Figure:
        """
        Correlation matrix of the metric scores.
        """
        columns = [col for col, _ in METRIC_SCORE_COLUMNS if col in self.scored.columns]
        if 'overall_score' in self.scored.columns:
            columns.append('overall_score')
        if len(columns) < 2 or len(self.scored) < 2:
            return None
        
        corr = self.scored[columns].astype(float).corr()
        
        fig, ax = plt.subplots(figsize=(9, 7))
        mask = np.triu(np.ones_like(corr, dtype=bool))
        sns.heatmap(corr, mask=mask, annot=True, fmt='.2f', cmap='RdBu_r',
                    center=0, vmin=-1, vmax=1, ax=ax)
        ax.set_title('Correlation of Metric Scores')
        
        if save:
            self._save(fig, "correlation_matrix.png")
        return fig
    
    # =========================================================================
    # REPORT GENERATION
    # =========================================================================
    
    def generate_all_plots(self):
        logger.info("Generating plots...")
        self.plot_overall_distribution()
        self.plot_metric_scores()
        self.plot_rate_vs_score()
        self.plot_correlation_matrix()
    
    def generate_summary_report(self) -> str:
        """
        Generate text summary report.
        
        Returns:
            Report text (also written to summary_report.txt)
        """
        report = []
        report.append("=" * 70)
        report.append("DELIVERY SCORING REPORT")
        report.append("=" * 70)
        report.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        report.append("")
        
        report.append("OVERVIEW")
        report.append("-" * 40)
        report.append(f"Total files: {len(self.df)}")
        report.append(f"Scored:      {len(self.scored)}")
        report.append(f"Failed:      {len(self.df) - len(self.scored)}")
        report.append("")
        
        if 'overall_score' in self.scored.columns and not self.scored.empty:
            overall = self.scored['overall_score'].astype(float)
            report.append("OVERALL SCORE")
            report.append("-" * 40)
            report.append(f"Mean:   {overall.mean():.1f}")
            report.append(f"Median: {overall.median():.1f}")
            report.append(f"Min:    {overall.min():.0f}")
            report.append(f"Max:    {overall.max():.0f}")
            report.append("")
        
        if 'emotional_feedback' in self.scored.columns and not self.scored.empty:
            report.append("TIERS")
            report.append("-" * 40)
            counts = self.scored['emotional_feedback'].value_counts()
            total = max(1, int(counts.sum()))
            for tier in ("excellent", "good", "poor"):
                n = int(counts.get(tier, 0))
                report.append(f"{tier.capitalize():<10} {n} ({100 * n / total:.1f}%)")
            report.append("")
        
        rows = [(label, self.scored[col].astype(float)) for col, label in METRIC_SCORE_COLUMNS
                if col in self.scored.columns and not self.scored.empty]
        if rows:
            report.append("METRIC SCORES (mean ± std)")
            report.append("-" * 40)
            for label, values in rows:
                std = values.std() if len(values) > 1 else 0.0
                report.append(f"{label:<14} {values.mean():5.1f} ± {std:.1f}")
            report.append("")
        
        report.append("=" * 70)
        report_text = "\n".join(report)
        
        report_path = self.output_dir / "summary_report.txt"
        with open(report_path, 'w', encoding='utf-8') as f:
            f.write(report_text)
        logger.info(f"Summary report saved to {report_path}")
        
        return report_text
    
    def generate_full_report(self):
        self.generate_all_plots()
        self.generate_summary_report()
        logger.info(f"Report saved to {self.output_dir}")


def generate_report(results_csv: str, output_dir: str = "reports"):
    """
    Convenience function to generate a report from a batch CSV.
    
    Args:
        results_csv: Path to results CSV file
        output_dir: Output directory for reports
    """
    df = pd.read_csv(results_csv)
    reporter = DeliveryReporter(df, output_dir)
    reporter.generate_full_report()
