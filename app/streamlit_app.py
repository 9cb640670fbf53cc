"""Streamlit performance dashboard for Crystal Football."""

from __future__ import annotations

from collections.abc import Sequence

import pandas as pd
import streamlit as st
from sqlalchemy.exc import OperationalError

from crystalfootball.betslips.pnl import (
    break_even_win_rate,
    format_percentage,
    format_units,
    kelly_stake,
)
from crystalfootball.betslips.reporting import export_csv, export_frame, summaries_frame
from crystalfootball.betslips.service import PerformanceReport, list_betslips, load_performance, to_domain
from crystalfootball.betslips.types import Betslip
from crystalfootball.config import get_settings
from crystalfootball.db.database import get_session, init_db
from crystalfootball.scheduling.jobs import run_daily_job
from crystalfootball.subscriptions.rules import format_currency
from crystalfootball.subscriptions.service import get_expiring, list_packages

settings = get_settings()
init_db()

st.set_page_config(page_title="Crystal Football", layout="wide", page_icon="⚽")
st.title("⚽ Crystal Football")
st.caption("Betslip performance in units. Past results do not guarantee future returns.")


@st.cache_data(show_spinner=False, ttl=300)
def load_report(weeks: int, months: int) -> PerformanceReport | None:
    try:
        with get_session() as session:
            return load_performance(session, weeks=weeks, months=months)
    except OperationalError:
        return None


@st.cache_data(show_spinner=False, ttl=300)
def load_recent_betslips(limit: int) -> list[Betslip]:
    with get_session() as session:
        rows, _ = list_betslips(session, page=1, limit=limit)
        return [to_domain(row) for row in rows]


def render_overview(report: PerformanceReport | None) -> None:
    st.subheader("Overall Performance")
    if not report or not report.overall.total_betslips:
        st.info("Performance dashboards will populate once betslips are settled.")
        return
    overall = report.overall
    cols = st.columns(4)
    cols[0].metric("Net profit", f"{format_units(overall.net_profit_units)}u")
    cols[1].metric("ROI", format_percentage(overall.roi_percentage))
    cols[2].metric("Win rate", format_percentage(overall.win_rate_percentage))
    cols[3].metric("Settled", f"{overall.won_count + overall.lost_count}/{overall.total_betslips}")
    st.caption(f"Last updated {report.last_updated:%b %d, %Y %H:%M} UTC")


def render_period_charts(report: PerformanceReport | None) -> None:
    if not report:
        return
    weekly = summaries_frame(report.weekly)
    monthly = summaries_frame(report.monthly)
    col1, col2 = st.columns(2)
    col1.write("**Weekly net units**")
    col1.bar_chart(weekly["net_profit_units"], height=260, use_container_width=True)
    col2.write("**Monthly ROI %**")
    col2.line_chart(monthly["roi_percentage"], height=260, use_container_width=True)
    with st.expander("Monthly breakdown", expanded=False):
        st.dataframe(
            monthly[["total_betslips", "won_count", "lost_count", "net_profit_units", "roi_percentage"]],
            use_container_width=True,
        )


def render_recent(betslips: Sequence[Betslip]) -> None:
    st.subheader("Recent Betslips")
    if not betslips:
        st.caption("No betslips posted yet.")
        return
    frame = export_frame(betslips)
    st.dataframe(
        frame[["posted_at", "league", "title", "selection", "odds_decimal", "stake_units", "outcome", "profit_units"]],
        use_container_width=True,
    )


def render_staking_calculator() -> None:
    st.subheader("Staking Calculator")
    col1, col2 = st.columns(2)
    odds = col1.number_input("Decimal odds", value=2.0, min_value=1.02, step=0.05)
    confidence = col2.slider("Win probability %", 1, 99, 55)
    kelly = kelly_stake(confidence / 100, odds)
    st.write(
        f"Break-even win rate: **{format_percentage(break_even_win_rate(odds))}** | "
        f"Kelly stake: **{kelly:.1%}** of bankroll (capped at 25%)"
    )


def render_admin(admin_mode: bool) -> None:
    st.subheader("Admin")
    if not admin_mode:
        st.caption("Enter the admin password in the sidebar to view subscriptions and exports.")
        return
    with get_session() as session:
        packages = pd.DataFrame(
            [
                {
                    "name": package.name,
                    "tier": package.tier,
                    "days": package.duration_days,
                    "price": format_currency(package.price_cents),
                }
                for package in list_packages(session, active_only=False)
            ]
        )
        expiring = pd.DataFrame(
            [vars(item) for item in get_expiring(session, days_ahead=settings.reminder_days_ahead)]
        )
    col1, col2 = st.columns(2)
    col1.write("**Packages**")
    col1.dataframe(packages, use_container_width=True)
    col2.write(f"**Expiring in the next {settings.reminder_days_ahead} days**")
    if expiring.empty:
        col2.caption("Nothing expiring soon.")
    else:
        col2.dataframe(expiring, use_container_width=True)

    betslips = load_recent_betslips(settings.stats_limit)
    st.download_button(
        "Download betslips CSV",
        data=export_csv(betslips),
        file_name="betslips.csv",
        mime="text/csv",
    )


# ----- Sidebar Controls -------------------------------------------------------
with st.sidebar:
    weeks = st.slider("Weeks of history", 4, 26, 12)
    months = st.slider("Months of history", 3, 12, 6)
    admin_password = st.text_input("Admin password", type="password")
    admin_mode = admin_password == settings.admin_password
    if admin_mode and st.button("Run daily subscription job now"):
        with st.spinner("Expiring ended subscriptions and sending reminders..."):
            result = run_daily_job()
        st.success(f"Daily job complete: {result}")

# ----- Page Layout ------------------------------------------------------------
report = load_report(weeks, months)
render_overview(report)
render_period_charts(report)

col_main, col_right = st.columns([0.62, 0.38], gap="large")
with col_main:
    render_recent(load_recent_betslips(25))
with col_right:
    render_staking_calculator()

render_admin(admin_mode)
