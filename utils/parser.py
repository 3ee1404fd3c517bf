import docx
from typing import List, Dict, Tuple
from core.logger import logger
from models.exam import OPTION_LABELS

MIN_OPTIONS = 4
MAX_OPTIONS = len(OPTION_LABELS)

class ParserError(Exception):
    """Custom exception for parser errors."""
    pass

def parse_docx(file_path: str) -> Tuple[List[Dict], List[str]]:
    """Parses a .docx question paper."""
    try:
        doc = docx.Document(file_path)
        lines = [para.text for para in doc.paragraphs]
    except Exception as e:
        logger.error("Failed to parse docx file", path=file_path, error=str(e))
        raise ParserError(f"Could not read {file_path}: {e}")
    return parse_lines(lines)

def parse_text_file(file_path: str) -> Tuple[List[Dict], List[str]]:
    with open(file_path, encoding="utf-8") as f:
        return parse_lines(f.read().splitlines())

def parse_file(file_path: str) -> Tuple[List[Dict], List[str]]:
    if file_path.lower().endswith(".docx"):
        return parse_docx(file_path)
    return parse_text_file(file_path)

def parse_lines(lines: List[str]) -> Tuple[List[Dict], List[str]]:
    """
    Parse a question paper written as:

        ?Question text
        +Correct option
        =Wrong option
        =Wrong option
        =Wrong option

    Lines without a prefix continue the previous question or option.
    Returns (questions, errors); each question is numbered in file order
    and its options are labelled a..f.
    """
    questions = []
    errors = []
    current = None
    start_line = 0

    def close(q, line_num):
        try:
            questions.append(_finalize(q, line_num, len(questions) + 1))
        except ParserError as e:
            errors.append(str(e))

    for i, text in enumerate(lines, 1):
        text = text.strip()
        if not text:
            continue

        if text.startswith('?'):
            if current:
                close(current, start_line)
            current = {'question': text[1:].strip(), 'options': [], 'correct': [], 'last': 'q'}
            start_line = i
        elif text.startswith('+') or text.startswith('='):
            if not current:
                errors.append(f"Line {i}: option before any question")
                continue
            if text.startswith('+'):
                current['correct'].append(len(current['options']))
            current['options'].append(text[1:].strip())
            current['last'] = 'o'
        elif current:
            # Multiline support: append to last item
            if current['last'] == 'q':
                current['question'] += " " + text
            else:
                current['options'][-1] += " " + text
        else:
            errors.append(f"Line {i}: text outside a question")

    if current:
        close(current, start_line)

    if not questions and not errors:
        raise ParserError("No questions found")

    return questions, errors

def _finalize(q: Dict, line_num: int, number: int) -> Dict:
    """Ensures a question has text, 4-6 options and exactly one correct answer."""
    if not q['question']:
        raise ParserError(f"Line {line_num}: empty question text")

    count = len(q['options'])
    if count < MIN_OPTIONS or count > MAX_OPTIONS:
        raise ParserError(f"Line {line_num}: expected {MIN_OPTIONS}-{MAX_OPTIONS} options, found {count}")

    if len(q['correct']) != 1:
        raise ParserError(f"Line {line_num}: expected exactly one correct option, found {len(q['correct'])}")

    row = {'question_number': number, 'question_text': q['question']}
    for label, content in zip(OPTION_LABELS, q['options']):
        row[f'option_{label}'] = content
    row['correct_option'] = OPTION_LABELS[q['correct'][0]]
    return row
