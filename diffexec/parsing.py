import json
import logging
import pathlib

import cattrs

from . import config
from . import ktest
from .differentiator import Differentiator, is_sym_arg, is_sym_out
from .errors import TooManyObjectsError

logger = logging.getLogger(__name__)


def _converter() -> cattrs.Converter:
    converter = cattrs.Converter(forbid_extra_keys=True)
    # Byte payloads travel as lists of integers.
    converter.register_structure_hook(bytes, lambda raw, _: bytes(raw))
    converter.register_unstructure_hook(bytes, list)
    return converter


def load_ktest(ktest_file: pathlib.Path) -> ktest.KTest:
    with open(ktest_file) as file:
        record = _converter().structure(json.load(file), ktest.KTest)
    if len(record.objects) > ktest.MAX_OBJECTS:
        raise TooManyObjectsError(ktest.MAX_OBJECTS)
    logger.debug('loaded %s: %d objects', ktest_file, len(record.objects))
    return record


def dump_ktest(record: ktest.KTest, ktest_file: pathlib.Path) -> None:
    with open(ktest_file, 'w') as file:
        json.dump(_converter().unstructure(record), file)


def load_options(options_file: pathlib.Path) -> config.Options:
    with open(options_file) as file:
        return _converter().structure(json.load(file), config.Options)


def _argument_index(name: str) -> int:
    return int(name[len('arg'):])


def differentiator_from_tests(
        test_a: ktest.KTest,
        test_b: ktest.KTest,
        rev_a: int,
        rev_b: int,
) -> Differentiator:
    differentiator = Differentiator(rev_a, rev_b)

    for obj in filter(lambda obj: is_sym_arg(obj.name), test_a.objects):
        differentiator.add_argument(_argument_index(obj.name), obj.data)

    for revision, record in ((rev_a, test_a), (rev_b, test_b)):
        for obj in filter(lambda obj: is_sym_out(obj.name), record.objects):
            differentiator.add_output(obj.name, revision, obj.data)
        stdout = record.find('stdout')
        if stdout is not None:
            differentiator.add_stdout(revision, stdout.data)

    return differentiator
