"""
UAMS developer CLI.

Commands:
    uams simulate     - Run a simulated study session over a synthetic deck
    uams interval     - Show the optimal review interval for a memory state
    uams sessions     - List persisted sessions

Usage:
    uams --help
    uams simulate --turns 30 --seed 7
    uams simulate --save --session-dir data/sessions
    uams interval --stability 12.5 --trend increasing
    python -m uams simulate
"""
from __future__ import annotations

import random
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from uams.core.exceptions import NoCandidatesError
from uams.core.models import (
    ContextualFactors,
    EnhancedResponseLog,
    Rating,
    StabilityTrend,
    UnifiedCard,
)
from uams.core.validation import partition_cards
from uams.study.dsr_engine import DSREngine
from uams.study.session_store import JsonSessionStore
from uams.study.study_session import StudySessionService


# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="uams",
    help="Unified Adaptive Memory Scheduler tools",
    no_args_is_help=True,
)
console = Console()


RATING_STYLES = {
    Rating.AGAIN: "bold red",
    Rating.HARD: "yellow",
    Rating.GOOD: "green",
    Rating.EASY: "bold green",
}

DEMO_TOPICS = [
    ("OSI model", "seven layers from physical to application"),
    ("TCP handshake", "SYN, SYN-ACK, ACK establishes a connection"),
    ("subnet mask", "separates the network and host portions of an address"),
    ("VLAN", "logical broadcast domain on a switch"),
    ("OSPF", "link-state routing protocol using Dijkstra"),
    ("ARP", "resolves an IPv4 address to a MAC address"),
    ("DNS", "resolves host names to IP addresses"),
    ("NAT", "translates private addresses to a public address"),
    ("STP", "prevents layer 2 loops by blocking redundant links"),
    ("DHCP", "assigns IP configuration to hosts automatically"),
]


def configure_logging(level: str, log_file: Optional[str] = None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if log_file:
        logger.add(log_file, level=level, rotation="10 MB", retention=5)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


# =============================================================================
# Simulation Helpers
# =============================================================================


def build_demo_deck(rng: random.Random, count: int, now: datetime) -> list[UnifiedCard]:
    """Synthetic deck with a spread of memory states."""
    cards = []
    for i in range(count):
        topic, fact = DEMO_TOPICS[i % len(DEMO_TOPICS)]
        reviews = rng.randint(0, 12)
        cards.append(
            UnifiedCard(
                id=f"card-{i:03d}",
                deck_id="demo",
                front_content=f"What is {topic}? ({i})",
                back_content=fact,
                difficulty=round(rng.uniform(1.5, 9.0), 2),
                stability=round(rng.uniform(0.5, 30.0), 2),
                retrievability=round(rng.uniform(0.3, 0.98), 2),
                review_count=reviews,
                last_reviewed=now - timedelta(days=rng.randint(1, 20)) if reviews else None,
                media_refs=("diagram.png",) if rng.random() < 0.2 else (),
            )
        )
    return cards


def simulate_rating(rng: random.Random, card: UnifiedCard, fatigue: float) -> Rating:
    recall = card.retrievability * (1 - 0.3 * fatigue)
    if rng.random() < recall:
        return Rating.EASY if card.difficulty < 4 else Rating.GOOD
    return Rating.AGAIN if rng.random() < 0.5 else Rating.HARD


# =============================================================================
# Commands
# =============================================================================


@app.command()
def simulate(
    cards: int = typer.Option(40, "--cards", "-c", help="Synthetic deck size"),
    turns: int = typer.Option(20, "--turns", "-t", help="Number of answers to simulate"),
    seed: int = typer.Option(42, "--seed", "-s", help="Random seed"),
    user_id: str = typer.Option("demo-user", "--user", "-u", help="Learner id"),
    save: bool = typer.Option(False, "--save", help="Persist the final session state"),
    session_dir: Optional[Path] = typer.Option(None, "--session-dir", help="Session directory"),
) -> None:
    """Run a simulated study session and show each decision."""
    rng = random.Random(seed)
    now = datetime(2024, 3, 4, 9, 0)

    deck, quarantined = partition_cards(build_demo_deck(rng, cards, now))
    if quarantined:
        console.print(f"[yellow]{len(quarantined)} cards quarantined[/yellow]")

    service = StudySessionService()
    state = service.start_session(user_id, deck, now=now, session_id=f"sim-{seed}")

    table = Table(title=f"Simulated session ({user_id})")
    table.add_column("#", justify="right")
    table.add_column("Card")
    table.add_column("Strategy")
    table.add_column("Rating")
    table.add_column("Momentum", justify="right")
    table.add_column("Fatigue", justify="right")
    table.add_column("Interval", justify="right")

    for turn in range(1, turns + 1):
        try:
            selection, state = service.next_card(state, now)
        except NoCandidatesError:
            console.print("[yellow]Deck exhausted[/yellow]")
            break

        rating = simulate_rating(rng, selection.card, state.session_fatigue_index)
        response_time = rng.randint(1500, 20000)
        now = now + timedelta(milliseconds=response_time + 5000)
        response = EnhancedResponseLog(
            timestamp=now,
            rating=rating,
            response_time=response_time,
            card_id=selection.card.id,
            contextual_factors=ContextualFactors(
                time_of_day=now,
                session_time=state.session_minutes(now),
                session_fatigue_index=state.session_fatigue_index,
                cognitive_load_at_time=state.cognitive_load_capacity,
            ),
        )
        outcome = service.process_response(state, selection.card, response, now=now)
        state = outcome.state

        style = RATING_STYLES[rating]
        table.add_row(
            str(turn),
            selection.card.id,
            selection.strategy or "",
            f"[{style}]{rating.value}[/{style}]",
            f"{state.session_momentum_score:.2f}",
            f"{state.session_fatigue_index:.2f}",
            f"{outcome.interval_days}d",
        )

    console.print(table)

    analysis = service.analyze(state, now=now)
    console.print(Panel(
        f"Momentum: {analysis.momentum.current_momentum:.2f} ({analysis.momentum.trend.value})\n"
        f"Load: {analysis.load.current_load:.2f}  Alert: {analysis.load.alert_level.value}\n"
        f"Flow: {analysis.flow.flow_score:.2f}  {analysis.momentum.reasoning}",
        title="[bold]Session Summary[/bold]",
        border_style="cyan",
    ))

    if save:
        path = JsonSessionStore(session_dir).save(state)
        console.print(f"[green]Saved session to {path}[/green]")


@app.command()
def interval(
    stability: float = typer.Option(..., "--stability", "-s", help="Stability in days"),
    retention: Optional[float] = typer.Option(None, "--retention", "-r", help="Target retention"),
    load_index: float = typer.Option(0.0, "--load", "-l", help="Card cognitive load index (0-1)"),
    trend: StabilityTrend = typer.Option(StabilityTrend.STABLE, "--trend", help="Stability trend"),
) -> None:
    """Show the optimal review interval for a memory state."""
    target = retention if retention is not None else get_settings().target_retention
    card = UnifiedCard(
        id="cli-card",
        deck_id="cli",
        stability=max(0.1, stability),
        cognitive_load_index=load_index,
        stability_trend=trend,
    )
    days = DSREngine().calculate_optimal_interval(card, target_retention=target)
    console.print(f"Optimal interval: [bold cyan]{days}[/bold cyan] days (retention {target:.2f})")


@app.command()
def sessions(
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Filter by learner"),
    session_dir: Optional[Path] = typer.Option(None, "--session-dir", help="Session directory"),
) -> None:
    """List persisted sessions."""
    stored = JsonSessionStore(session_dir).list_sessions(user_id)
    if not stored:
        console.print("[dim]No saved sessions[/dim]")
        return

    table = Table()
    table.add_column("Session")
    table.add_column("User")
    table.add_column("Started")
    table.add_column("Answers", justify="right")
    table.add_column("Momentum", justify="right")

    for state in stored:
        table.add_row(
            state.session_id,
            state.user_id,
            state.session_start_time.strftime("%Y-%m-%d %H:%M"),
            str(len(state.recent_responses)),
            f"{state.session_momentum_score:.2f}",
        )
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
