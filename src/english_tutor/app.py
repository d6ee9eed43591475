"""Interactive CLI application."""
import sys
from datetime import date, datetime

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from english_tutor import grammar, profile, vocabulary
from english_tutor.config import get_settings
from english_tutor.content import ContentCatalog
from english_tutor.dashboard import get_accuracy_color, get_accuracy_label, get_learner_overview
from english_tutor.db import init_db
from english_tutor.models import LEVELS, Mode, Phase, PlacementResult, Quality
from english_tutor.placement import PlacementConfig, PlacementEngine, level_from_certificate
from english_tutor.repository import CardRepository
from english_tutor.sm2 import SchedulerConfig, forecast

console = Console()

MIN_PRODUCTION_LENGTH = 10
EXIT_WORDS = ("q", "menu")


class SessionExitRequested(Exception):
    """Learner asked to leave the current activity and return to the menu."""


def session_prompt(prompt: str, **kwargs) -> str:
    answer = Prompt.ask(prompt, **kwargs)
    if answer.strip().lower() in EXIT_WORDS:
        raise SessionExitRequested()
    return answer


def session_int_prompt(prompt: str, choices: list[str]) -> int:
    answer = session_prompt(prompt, choices=choices + list(EXIT_WORDS), show_choices=False)
    return int(answer)


def show_welcome():
    console.print(Panel(
        "[bold]English Tutor[/bold]\n[dim]Spaced review, grammar journeys and placement[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("review", "Vocabulary review session"),
        ("words", "Add words from a starter pack"),
        ("grammar", "Continue a grammar topic"),
        ("placement", "Take the placement test"),
        ("certificate", "Set level from IELTS, TOEFL or Cambridge"),
        ("dashboard", "Levels and progress"),
        ("reset", "Delete all my progress"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def _card_front(word, mode: Mode) -> str:
    if mode is Mode.RECEPTIVE:
        return f"[bold]{word.word}[/bold] {word.transcription}\n[dim]What does this word mean?[/dim]"
    return f"[bold]{word.translation or word.definition}[/bold]\n[dim]How do you say this in English?[/dim]"


def _card_back(word, mode: Mode) -> str:
    answer = word.translation if mode is Mode.RECEPTIVE else f"{word.word} {word.transcription}"
    examples = "\n".join(f"[dim]- {e}[/dim]" for e in word.examples[:2])
    return f"{answer}\n{examples}".strip()


def run_review_session(session: vocabulary.ReviewSession, mode: Mode, limit: int) -> dict | None:
    queue = session.start(mode, limit)
    if not queue:
        console.print("[yellow]No cards due right now! Add words with 'words'.[/yellow]")
        return None
    console.print(f"\n[bold]{mode.value.title()} Review[/bold] - {len(queue)} cards\n")
    try:
        while (word := session.current_card()) is not None:
            console.print(Panel(_card_front(word, mode), title=f"Card {session.cursor + 1}/{len(queue)}", border_style="cyan"))
            typed = None
            if mode is Mode.PRODUCTIVE:
                typed = session_prompt("Type the word")
            else:
                session_prompt("[dim]Press Enter to reveal answer[/dim]", default="", show_default=False)
            console.print(Panel(_card_back(word, mode), border_style="green"))
            rating = session_int_prompt("Rate yourself (0=again, 1=hard, 2=good, 3=easy)", choices=["0", "1", "2", "3"])
            session.submit_answer(Quality(rating), user_input=typed)
            console.print()
    except SessionExitRequested:
        console.print("[dim]Session stopped. Answers so far are saved.[/dim]")
    summary = session.finish()
    pct = summary["accuracy"] * 100
    console.print(f"[bold]Reviewed {summary['total']} cards, {summary['correct']} good or easy ({pct:.0f}%)[/bold]")
    return summary


def run_placement(engine: PlacementEngine) -> PlacementResult | None:
    info = engine.start()
    console.print(Panel(
        f"About {info['estimated_questions']} questions, roughly {info['time_limit_minutes']} minutes.\n"
        "The test adapts to your level. Type 'q' to stop.",
        title="Placement Test", border_style="blue",
    ))
    while (question := engine.next_question()) is not None:
        console.print(f"\n[bold]Q{question.number}.[/bold] [dim]({question.section.value})[/dim]")
        if question.text:
            console.print(Panel(question.text, border_style="dim"))
        console.print(question.question)
        for i, option in enumerate(question.options):
            console.print(f"  [cyan]{i + 1})[/cyan] {option}")
        try:
            choice = session_int_prompt("Your answer", choices=[str(i + 1) for i in range(len(question.options))])
        except SessionExitRequested:
            console.print("[dim]Placement test abandoned. Nothing was saved.[/dim]")
            return None
        feedback = engine.submit_answer(choice - 1)
        if feedback["correct"]:
            console.print("[green]Correct![/green]")
        else:
            console.print(f"[red]Incorrect.[/red] Answer: [green]{feedback['correct_option']}[/green]")

    result = engine.finish()
    table = Table(title=f"Your level: {result.overall_level}")
    table.add_column("Section", style="cyan")
    table.add_column("Level")
    table.add_column("Accuracy", justify="right")
    for section, r in result.section_results.items():
        table.add_row(section.value, r.level, f"{r.accuracy * 100:.0f}% ({r.correct}/{r.total})")
    console.print(table)
    console.print(f"\n{result.recommendation['advice']}")
    if result.recommendation["weak_area"]:
        console.print(f"[yellow]{result.recommendation['weak_area']['suggestion']}[/yellow]")
    return result


def _run_practice(journey: grammar.TopicJourney) -> float:
    exercises = journey.practice_exercises()
    if not exercises:
        console.print("[dim]No practice exercises for this topic yet.[/dim]")
        return 1.0
    correct = 0
    for exercise in exercises:
        console.print(f"\n{exercise.get('sentence') or exercise.get('question', '')}")
        options = exercise.get("options")
        if options:
            for i, option in enumerate(options):
                console.print(f"  [cyan]{i + 1})[/cyan] {option}")
            answer = session_int_prompt("Your answer", choices=[str(i + 1) for i in range(len(options))]) - 1
        else:
            answer = session_prompt("Your answer")
        outcome = journey.submit_practice_answer(exercise["index"], answer)
        console.print("[green]Correct![/green]" if outcome["correct"] else f"[red]{outcome['feedback']}[/red]")
        correct += outcome["correct"]
    return correct / len(exercises)


def run_topic(journey: grammar.TopicJourney, topic_id: str, level: str) -> None:
    state = journey.start(topic_id, level)
    console.print(Panel(state["topic"].get("title", topic_id), title=f"Grammar {level}", border_style="magenta"))
    try:
        while True:
            phase = journey.current_phase()
            content = journey.phase_content(phase) or {}
            console.print(f"\n[bold]{phase.value.replace('_', ' ').title()}[/bold]")
            for key in ("instruction", "title", "text", "description"):
                if content.get(key):
                    console.print(content[key])
            for point in content.get("points", []):
                console.print(f"  [cyan]-[/cyan] {point}")

            if phase is Phase.PRACTICE:
                score = _run_practice(journey)
                result = journey.complete_phase(phase, score=score)
                if not result["progress"].practice.completed:
                    console.print(f"[yellow]Score {score * 100:.0f}%. Try again to pass.[/yellow]")
            elif phase is Phase.PRODUCE:
                text = session_prompt("Write your sentences")
                if len(text.strip()) < MIN_PRODUCTION_LENGTH:
                    console.print("[yellow]Please write a little more.[/yellow]")
                    continue
                journey.complete_phase(phase, text=text)
            elif phase is Phase.INPUT_FLOOD:
                texts = journey.input_flood_texts()
                read = journey.progress.input_flood
                if read < len(texts):
                    console.print(Panel(str(texts[read]), border_style="dim"))
                session_prompt("[dim]Press Enter when done reading[/dim]", default="", show_default=False)
                journey.complete_phase(phase)
            elif phase is Phase.REVIEW:
                cards = journey.review_cards()
                recalled = 0
                for card in cards:
                    console.print(Panel(str(card.get("front", card)), border_style="cyan"))
                    session_prompt("[dim]Press Enter to reveal[/dim]", default="", show_default=False)
                    console.print(str(card.get("back", "")))
                    recalled += Confirm.ask("Did you recall it?")
                accuracy = recalled / len(cards) if cards else 1.0
                result = journey.complete_phase(phase, accuracy=accuracy)
                label = "acquired" if result["progress"].acquired else "completed"
                console.print(f"[green]Topic {label}![/green]")
                return
            else:
                session_prompt("[dim]Press Enter to continue[/dim]", default="", show_default=False)
                journey.complete_phase(phase)
    except SessionExitRequested:
        console.print("[dim]Progress saved. You'll resume from this phase.[/dim]")


def cmd_review(settings):
    mode = Mode(Prompt.ask("Mode", choices=[m.value for m in Mode], default=Mode.RECEPTIVE.value))
    repo = CardRepository(settings.db_path, settings.user_id)
    session = vocabulary.ReviewSession(repo, SchedulerConfig.from_settings(settings))
    started = datetime.now()
    summary = run_review_session(session, mode, settings.session_limit)
    if summary and summary["total"]:
        minutes = (datetime.now() - started).total_seconds() / 60
        profile.add_study_time(settings.db_path, settings.user_id, minutes)


def cmd_words(settings, catalog: ContentCatalog):
    level = Prompt.ask("Level", choices=LEVELS, default=profile.get_level(settings.db_path, settings.user_id, "vocabulary"))
    pack = catalog.vocabulary_pack(level)
    if not pack:
        console.print(f"[yellow]No starter pack for {level}.[/yellow]")
        return
    names = [c["name"] for c in pack.get("categories", [])]
    for name in names:
        console.print(f"  [cyan]-[/cyan] {name}")
    category = Prompt.ask("Category (blank for all)", default="", show_default=False) or None
    result = vocabulary.add_from_starter_pack(CardRepository(settings.db_path, settings.user_id), catalog, level, category)
    console.print(f"[green]{result['message']}[/green]")


def cmd_grammar(settings, catalog: ContentCatalog):
    level = profile.get_level(settings.db_path, settings.user_id, "grammar")
    progress = grammar.load_all_progress(settings.db_path, settings.user_id)
    topics = grammar.get_topics_for_level(catalog, progress, level)
    suggestion = grammar.get_next_topic(catalog, progress, level)
    if not topics and not suggestion:
        console.print(f"[yellow]No grammar topics available for {level}.[/yellow]")
        return
    table = Table(title=f"Grammar topics {level}")
    table.add_column("Id", style="cyan")
    table.add_column("Topic")
    table.add_column("Status")
    for topic in topics:
        table.add_row(topic["id"], topic["name"], topic["status"])
    console.print(table)
    default = suggestion["id"] if suggestion else topics[0]["id"]
    topic_id = Prompt.ask("Topic", default=default)
    topic_level = suggestion.get("suggested_level", level) if suggestion and suggestion["id"] == topic_id else level
    journey = grammar.TopicJourney(settings.db_path, settings.user_id, catalog, settings.practice_pass_threshold)
    run_topic(journey, topic_id, topic_level)


def cmd_placement(settings, catalog: ContentCatalog):
    engine = PlacementEngine(catalog, PlacementConfig.from_settings(settings))
    result = run_placement(engine)
    if result is not None:
        profile.save_placement_result(settings.db_path, settings.user_id, result)
        profile.log_session(
            settings.db_path, settings.user_id, "placement", result.duration_seconds,
            sum(r.correct for r in result.section_results.values()) / max(result.questions_answered, 1),
            details={"level": result.overall_level},
        )


def cmd_certificate(settings):
    kind = Prompt.ask("Certificate", choices=["IELTS", "TOEFL", "Cambridge"])
    score = Prompt.ask("Score or exam (e.g. 6.5, 95, FCE)")
    taken = Prompt.ask("Date taken (YYYY-MM-DD)")
    try:
        taken_on = date.fromisoformat(taken)
    except ValueError:
        console.print("[red]Invalid date.[/red]")
        return
    result = level_from_certificate(kind, score, taken_on)
    if not result["success"]:
        console.print(f"[yellow]{result['message']}[/yellow]")
        return
    for skill in profile.SKILLS:
        profile.set_level(settings.db_path, settings.user_id, skill, result["level"])
    console.print(f"[green]{result['message']}[/green]")


def cmd_dashboard(settings, catalog: ContentCatalog):
    overview = get_learner_overview(settings.db_path, settings.user_id, catalog)
    levels = overview["levels"]
    console.print(Panel(
        f"[bold]Overall level {levels['overall']}[/bold]  |  Streak: {overview['streak']} days",
        title="Learner Dashboard", border_style="blue",
    ))

    table = Table(title="Skills")
    table.add_column("Skill", style="cyan")
    table.add_column("Level")
    for skill, level in levels.items():
        if skill != "overall":
            table.add_row(skill, level)
    console.print(table)

    vocab = overview["vocabulary"]
    due = overview["due"]
    console.print(f"\n  Words: [bold]{vocab['total']}[/bold]  |  "
                  f"Fully learned: [bold]{vocab['fully_learned']}[/bold]  |  "
                  f"Due today: [bold]{due['receptive']}[/bold] receptive, [bold]{due['productive']}[/bold] productive")
    console.print(f"  [dim]{overview['gap']['recommendation']}[/dim]")

    words = CardRepository(settings.db_path, settings.user_id).all_words()
    upcoming = forecast([w.receptive for w in words] + [w.productive for w in words])
    console.print("  Next 7 days: " + "  ".join(f"+{day}d [bold]{n}[/bold]" for day, n in upcoming.items()))

    stats = overview["grammar"]
    console.print(f"  Grammar topics: [bold]{stats['topics_completed']}[/bold] completed of "
                  f"{stats['topics_started']} started")
    if overview["next_topic"]:
        console.print(f"  Next topic: [cyan]{overview['next_topic']['name']}[/cyan]")
    errors = overview["errors"]
    if errors["total_errors"]:
        console.print(f"  [yellow]{errors['message']}[/yellow]")
        for example in errors["top_topics"][0]["examples"]:
            console.print(f"    [dim]{escape(example)}[/dim]")

    for kind, score in overview["accuracy"].items():
        color = get_accuracy_color(score)
        console.print(f"  {kind.title()} accuracy: [{color}]{score}% {get_accuracy_label(score)}[/{color}]")

    if overview["reassessment"]["needed"]:
        console.print(f"\n  [yellow]{overview['reassessment']['message']}[/yellow]")


def cmd_reset(settings):
    if Confirm.ask("[red]Delete all words, grammar progress and test results?[/red]", default=False):
        profile.reset_all_progress(settings.db_path, settings.user_id)
        console.print("[green]All progress deleted.[/green]")


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format="<level>{level: <8}</level> | {message}")


def main():
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db(settings.db_path)
    catalog = ContentCatalog()

    show_welcome()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="review").strip().lower()
        try:
            if choice == "review":
                cmd_review(settings)
            elif choice == "words":
                cmd_words(settings, catalog)
            elif choice == "grammar":
                cmd_grammar(settings, catalog)
            elif choice == "placement":
                cmd_placement(settings, catalog)
            elif choice == "certificate":
                cmd_certificate(settings)
            elif choice == "dashboard":
                cmd_dashboard(settings, catalog)
            elif choice == "reset":
                cmd_reset(settings)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]See you next time![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            logger.exception("Command {} failed", choice)
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
