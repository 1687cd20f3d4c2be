#!/usr/bin/env python3
"""
CLI for grading OMR answer sheets
"""

import json
import logging
from pathlib import Path
from typing import Optional

import click
import cv2

from omrgrade.config import DetectionConfig
from omrgrade.models import AnswerKey, load_answer_key, save_answer_key
from omrgrade.pipeline import detect_answers, evaluate_sheet
from omrgrade.pixels import load_image
from omrgrade.results import format_number, letter_grade, review_answers, write_results_csv
from omrgrade.synthetic import render_sheet

logger = logging.getLogger(__name__)


def build_config(config_path: Optional[Path], verbose: bool, **overrides) -> DetectionConfig:
    config = DetectionConfig.from_file(config_path) if config_path else DetectionConfig()
    return config.replace(verbose=verbose or None, **overrides)


def detection_options(f):
    """Options shared by every command that scans an image"""
    options = [
        click.option('--config', 'config_path', type=click.Path(exists=True, path_type=Path),
                     help='JSON file with detection settings'),
        click.option('--scan-step', type=int, help='Scan grid spacing in pixels'),
        click.option('--bubble-radius', type=int, help='Expected bubble radius in pixels'),
        click.option('--min-darkness', type=float, help='Minimum average darkness of a mark'),
        click.option('--workers', type=int, help='Threads used to scan the sheet'),
        click.option('-v', '--verbose', is_flag=True, help='Log detection details'),
    ]
    for option in reversed(options):
        f = option(f)
    return f


@click.group()
def cli():
    """OMR Grading CLI"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)s - %(message)s'
    )


@cli.command()
@click.argument('image_path', type=click.Path(exists=True, path_type=Path))
@click.option('--questions', type=int, required=True, help='Number of questions on the sheet')
@detection_options
def detect(image_path: Path, questions: int, config_path: Optional[Path], verbose: bool, **overrides):
    """Detect marked bubbles on an aligned sheet image"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        config = build_config(config_path, verbose, **overrides)
        answers, warnings = detect_answers(load_image(image_path), questions, config)
    except ValueError as e:
        logger.error(f"Detection failed: {e}")
        raise click.ClickException(str(e))

    logger.info(f"Detected answers for {len(answers)} of {questions} questions:")
    for q_num in range(1, questions + 1):
        click.echo(f"  Question {q_num}: {answers.get(q_num, 'blank')}")
    for warning in warnings:
        click.echo(f"Warning: {warning.value}")


@cli.command()
@click.argument('image_path', type=click.Path(exists=True, path_type=Path))
@click.argument('key_path', type=click.Path(exists=True, path_type=Path))
@click.option('--student-id', default='', help='Student identifier')
@click.option('--student-name', default='', help='Student name')
@click.option('--csv', 'csv_path', type=click.Path(path_type=Path), help='Append the result to this CSV file')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
@detection_options
def grade(image_path: Path, key_path: Path, student_id: str, student_name: str,
          csv_path: Optional[Path], as_json: bool, config_path: Optional[Path],
          verbose: bool, **overrides):
    """Grade a sheet image against an answer key JSON file"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        config = build_config(config_path, verbose, **overrides)
        key = load_answer_key(key_path)
        evaluation = evaluate_sheet(key, load_image(image_path), student_id=student_id,
                                    student_name=student_name, config=config)
    except ValueError as e:
        logger.error(f"Grading failed: {e}")
        raise click.ClickException(str(e))

    result = evaluation.result
    if as_json:
        payload = result.to_dict()
        payload['warnings'] = [w.value for w in evaluation.warnings]
        click.echo(json.dumps(payload, indent=2))
    else:
        stats = result.detection_stats
        click.echo(f"{key.exam_name or key.id}: {result.student_name or result.student_id or image_path.name}")
        for subject, score in result.scores.items():
            click.echo(f"  {subject}: {format_number(score)}")
        click.echo(f"Total: {format_number(result.total_score)}/{format_number(result.max_marks)} "
                   f"({format_number(result.percentage)}%, grade {letter_grade(result.percentage)})")
        click.echo(f"Answered {stats.questions_answered}, blank {stats.questions_blank}, "
                   f"correct {stats.correct_answers}, wrong {stats.wrong_answers}")
        if verbose:
            for q_num, outcome in review_answers(result, key).items():
                click.echo(f"  Q{q_num}: {result.answers.get(q_num, '-')} "
                           f"(key {key.answers.get(q_num, '-')}) {outcome}")
        for warning in evaluation.warnings:
            click.echo(f"Warning: {warning.value}")

    if csv_path:
        write_results_csv([result], csv_path, {key.id: key}, append=True)


@cli.command()
@click.argument('key_path', type=click.Path(exists=True, path_type=Path))
@click.argument('output', type=click.Path(path_type=Path))
@click.option('--shade', type=click.IntRange(0, 255), default=0, help='Grey level of filled bubbles')
def render(key_path: Path, output: Path, shade: int):
    """Render a synthetic sheet filled with an answer key's correct answers"""
    try:
        key = load_answer_key(key_path)
        img = render_sheet(dict(key.answers), total_questions=key.total_questions, shade=shade)
    except ValueError as e:
        logger.error(f"Rendering failed: {e}")
        raise click.ClickException(str(e))

    try:
        written = cv2.imwrite(str(output), cv2.cvtColor(img, cv2.COLOR_RGB2BGR))
    except cv2.error as e:
        logger.error(f"Rendering failed: {e}")
        raise click.ClickException(f"Could not write {output}: {e}")
    if not written:
        logger.error(f"Rendering failed: could not write {output}")
        raise click.ClickException(f"Could not write {output}")
    logger.info(f"Sheet saved to {output}")


@cli.command('new-key')
@click.argument('output', type=click.Path(path_type=Path))
@click.option('--id', 'key_id', required=True, help='Answer key identifier')
@click.option('--exam-name', default='', help='Exam display name')
@click.option('--answers', required=True, help='Correct options in question order, e.g. ABCDDA')
@click.option('--subject', 'subjects', multiple=True, required=True,
              help='Subject name; each one takes the next 10 questions for 20 marks')
def new_key(output: Path, key_id: str, exam_name: str, answers: str, subjects):
    """Write an answer key JSON file"""
    answers = answers.strip().upper()
    try:
        key = AnswerKey(id=key_id, total_questions=len(answers), subjects=(),
                        answers={q: a for q, a in enumerate(answers, 1)}, exam_name=exam_name)
        for name in subjects:
            key = key.with_subject(name)
    except ValueError as e:
        logger.error(f"Invalid answer key: {e}")
        raise click.ClickException(str(e))

    save_answer_key(key, output)
    logger.info(f"Answer key {key.id} with {key.total_questions} questions saved to {output}")


if __name__ == "__main__":
    cli()
