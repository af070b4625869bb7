import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from config.constants import COLOR_PALETTE, ISOTOPES, ISOTOPE_LABELS, OUT_DIR


class Plotter:
    """
    Diagnostic figures for a batch of TK fits.

    Attributes:
        label (str): Dataset or individual label used in titles and file names.
        out_dir (str): The directory where plots will be saved.
        color_palette (list): List of color codes used for plotting.
    """

    def __init__(self, label: str, out_dir: str = OUT_DIR):
        self.label = label
        self.out_dir = out_dir
        self.color_palette = COLOR_PALETTE

    def _save_fig(self, fig, filename: str, dpi: int = 300):
        """
        Saves and closes the given matplotlib figure.
        """
        path = os.path.join(self.out_dir, filename)
        fig.savefig(path, dpi=dpi)
        plt.close(fig)
        return path

    def plot_trajectory(self, ident, trajectory: pd.DataFrame, measured):
        """
        Both isotope masses over time under the fitted parameters,
        with the measured terminal contents as markers.

        :param ident: individual id
        :param trajectory: DataFrame with Day, m_iso1, m_iso2
        :param measured: (measured_iso1, measured_iso2)
        """
        fig, ax = plt.subplots(figsize=(8, 5))
        t_end = trajectory["Day"].iloc[-1]
        for i, iso in enumerate(ISOTOPES):
            color = self.color_palette[i]
            ax.plot(trajectory["Day"], trajectory[f"m_{iso}"], color=color, lw=2,
                    label=f"{ISOTOPE_LABELS[iso]} (model)")
            ax.scatter([t_end], [measured[i]], color=color, edgecolor="black", s=80, zorder=3,
                       label=f"{ISOTOPE_LABELS[iso]} (measured)")
        ax.set_xlabel("Time (days)")
        ax.set_ylabel("Content (ng)")
        ax.set_title(f"{self.label} | {ident}")
        ax.grid(True, alpha=0.3)
        ax.legend(loc="upper left", fontsize="small")
        plt.tight_layout()
        return self._save_fig(fig, f"{ident}_trajectory.png")

    def plot_gof(self, table: pd.DataFrame):
        """
        Measured vs fitted terminal contents for both isotopes, with the 1:1 line.
        Flagged fits (status other than 'converged') are drawn with a cross marker.
        """
        long = pd.concat([
            pd.DataFrame({
                "Measured": table[f"measured_{iso}"],
                "Fitted": table[f"fitted_{iso}"],
                "Isotope": ISOTOPE_LABELS[iso],
                "Flagged": table["status"] != "converged",
            })
            for iso in ISOTOPES
        ], ignore_index=True).dropna(subset=["Measured", "Fitted"])

        fig, ax = plt.subplots(figsize=(7, 7))
        if not long.empty:
            sns.scatterplot(data=long, x="Measured", y="Fitted", hue="Isotope", style="Flagged",
                            markers={False: "o", True: "X"}, palette=self.color_palette[:2],
                            s=80, edgecolor="black", alpha=0.7, ax=ax)
            lo = float(np.nanmin(long[["Measured", "Fitted"]].to_numpy()))
            hi = float(np.nanmax(long[["Measured", "Fitted"]].to_numpy()))
            ax.plot([lo, hi], [lo, hi], color="gray", linestyle="--", linewidth=1.2)
        ax.set_xlabel("Measured content (ng)")
        ax.set_ylabel("Fitted content (ng)")
        ax.set_title(f"{self.label} | Goodness of fit")
        ax.grid(True, alpha=0.2)
        plt.tight_layout()
        return self._save_fig(fig, f"{self.label}_goodness_of_fit.png")

    def plot_parameters(self, table: pd.DataFrame):
        """
        Distribution of the fitted kin, ke and ku across individuals.
        """
        fig, axes = plt.subplots(1, 3, figsize=(14, 4))
        for ax, col, color in zip(axes, ("kin", "ke", "ku"), self.color_palette):
            values = table[col].dropna()
            if not values.empty:
                sns.histplot(values, ax=ax, color=color, kde=len(values) > 2)
            ax.set_title(col)
        fig.suptitle(self.label)
        plt.tight_layout()
        return self._save_fig(fig, f"{self.label}_parameters.png")
