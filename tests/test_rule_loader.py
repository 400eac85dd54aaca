import os
import shutil
import sys
import tempfile
import textwrap
import unittest

# Add src to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from detection.matcher import MapCriteria
from detection.rule_loader import RuleValidationError, build_rule, load_rules, rule_paths_from_config

VALID_RULE = """\
title: Test Rule
id: test-rule-001
status: experimental
description: A test rule for unit testing
author: Test Author
date: 2025/01/01
modified: 2025-01-02
tags:
    - attack.test
level: Low
logsource:
    category: process
    product: linux
    service: syslog
detection:
    selection:
        message:
            - 'test message'
    condition: selection
falsepositives:
    - Test false positive
fields:
    - message
    - hostname
"""


class TestRuleLoader(unittest.TestCase):
    def setUp(self):
        self.rules_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.rules_dir, ignore_errors=True)

    def write_rule(self, relative_path, content):
        path = os.path.join(self.rules_dir, relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            f.write(textwrap.dedent(content))
        return path

    def test_load_valid_rule(self):
        path = self.write_rule('test_rule.yml', VALID_RULE)

        rule_set = load_rules([self.rules_dir])

        self.assertEqual(len(rule_set), 1)
        rule = rule_set.get('test-rule-001')
        self.assertIsNotNone(rule)
        self.assertEqual(rule.title, 'Test Rule')
        self.assertEqual(rule.level, 'low')
        self.assertEqual(rule.status, 'experimental')
        self.assertEqual(rule.date, '2025/01/01')
        self.assertEqual(rule.modified, '2025-01-02')
        self.assertEqual(rule.tags, ('attack.test',))
        self.assertEqual(rule.falsepositives, ('Test false positive',))
        self.assertEqual(rule.fields, ('message', 'hostname'))
        self.assertEqual(rule.logsource.service, 'syslog')
        self.assertEqual(rule.selection_names, ('selection',))
        self.assertEqual(rule.condition, 'selection')
        self.assertEqual(rule.file_path, path)

    def test_nested_directories_and_yaml_extension(self):
        self.write_rule('linux/syslog/a.yml', VALID_RULE)
        self.write_rule('external/sigmahq/b.yaml', VALID_RULE.replace('test-rule-001', 'test-rule-002'))
        self.write_rule('external/custom/notes.txt', 'not a rule')

        rule_set = load_rules([self.rules_dir])

        self.assertEqual(sorted(rule_set.rule_ids), ['test-rule-001', 'test-rule-002'])
        self.assertEqual(rule_set.files_scanned, 2)

    def test_malformed_rules_are_skipped(self):
        self.write_rule('good.yml', VALID_RULE)
        self.write_rule('no_id.yml', VALID_RULE.replace('id: test-rule-001\n', ''))
        self.write_rule('no_title.yml', VALID_RULE.replace('title: Test Rule\n', '').replace('001', '003'))
        self.write_rule('no_detection.yml', """\
            title: No detection
            id: no-detection
        """)
        self.write_rule('no_condition.yml', """\
            title: No condition
            id: no-condition
            detection:
                selection:
                    message: foo
        """)
        self.write_rule('only_condition.yml', """\
            title: Only condition
            id: only-condition
            detection:
                condition: selection
        """)
        self.write_rule('list_condition.yml', """\
            title: Two conditions
            id: list-condition
            detection:
                selection:
                    message: foo
                condition:
                    - selection
                    - selection
        """)
        self.write_rule('keyword_block.yml', """\
            title: Keyword list
            id: keyword-block
            detection:
                keywords:
                    - foo
                condition: keywords
        """)
        self.write_rule('broken.yml', "title: [unclosed\nid: broken\n")
        self.write_rule('empty.yml', "")

        rule_set = load_rules([self.rules_dir])

        self.assertEqual(rule_set.rule_ids, ('test-rule-001',))
        self.assertEqual(rule_set.files_scanned, 10)
        self.assertEqual(rule_set.files_skipped, 9)
        self.assertEqual(len(rule_set.errors), 9)

    def test_missing_directory_contributes_nothing(self):
        self.write_rule('good.yml', VALID_RULE)
        missing = os.path.join(self.rules_dir, 'does-not-exist')

        with self.assertLogs('detection.rule_loader', level='WARNING'):
            rule_set = load_rules([missing, self.rules_dir])

        self.assertEqual(rule_set.rule_ids, ('test-rule-001',))

    def test_only_missing_directory(self):
        rule_set = load_rules([os.path.join(self.rules_dir, 'nowhere')])
        self.assertEqual(len(rule_set), 0)

    def test_impossible_date_skips_only_that_file(self):
        self.write_rule('a_bad.yml', VALID_RULE.replace('date: 2025/01/01', 'date: 2025-02-30').replace('test-rule-001', 'bad-date'))
        self.write_rule('b_good.yml', VALID_RULE)

        with self.assertLogs('detection.rule_loader', level='WARNING') as logs:
            rule_set = load_rules([self.rules_dir])

        self.assertEqual(rule_set.rule_ids, ('test-rule-001',))
        self.assertEqual(rule_set.files_scanned, 2)
        self.assertEqual(rule_set.files_skipped, 1)
        self.assertIn('a_bad.yml', rule_set.errors[0])
        self.assertTrue(any('a_bad.yml' in line for line in logs.output))

    def test_file_reached_twice_is_loaded_once(self):
        self.write_rule('linux/a.yml', VALID_RULE)

        rule_set = load_rules([self.rules_dir, os.path.join(self.rules_dir, 'linux')])

        self.assertEqual(len(rule_set), 1)
        self.assertEqual(rule_set.files_scanned, 1)

    def test_duplicate_ids_are_skipped(self):
        self.write_rule('a.yml', VALID_RULE)
        self.write_rule('b.yml', VALID_RULE)

        rule_set = load_rules([self.rules_dir])

        self.assertEqual(len(rule_set), 1)
        self.assertEqual(rule_set.files_skipped, 1)

    def test_multiple_modifiers_warn(self):
        self.write_rule('multi.yml', """\
            title: Multi
            id: multi
            detection:
                selection:
                    exe:
                        startswith: /tmp/
                        endswith: .sh
                condition: selection
        """)

        with self.assertLogs('detection.rule_loader', level='WARNING') as logs:
            rule_set = load_rules([self.rules_dir])

        criteria = rule_set.get('multi').selections[0].entries[0].criteria
        self.assertIsInstance(criteria, MapCriteria)
        self.assertEqual(criteria.pattern.modifier, 'startswith')
        self.assertTrue(any('several modifiers' in line for line in logs.output))

    def test_rule_paths_from_config(self):
        self.assertEqual(
            rule_paths_from_config({'rules_path': './rules', 'rules_paths': ['/opt/rules']}),
            ['/opt/rules', './rules'],
        )
        self.assertEqual(rule_paths_from_config({}), [])


class TestBuildRule(unittest.TestCase):
    def test_numeric_id_is_coerced(self):
        rule = build_rule({'id': 42, 'title': 'Numeric', 'detection': {'s': {'pid': 1}, 'condition': 's'}})
        self.assertEqual(rule.rule_id, '42')
        self.assertEqual(rule.level, 'unknown')

    def test_logsource_must_be_mapping(self):
        with self.assertRaises(RuleValidationError):
            build_rule({
                'id': 'x', 'title': 'x', 'logsource': 'linux',
                'detection': {'s': {'message': 'a'}, 'condition': 's'},
            })

    def test_empty_selection_block_is_rejected(self):
        with self.assertRaises(RuleValidationError):
            build_rule({'id': 'x', 'title': 'x', 'detection': {'s': {}, 'condition': 's'}})

    def test_rule_is_immutable(self):
        rule = build_rule({'id': 'x', 'title': 'x', 'detection': {'s': {'message': 'a'}, 'condition': 's'}})
        with self.assertRaises(AttributeError):
            rule.title = 'changed'


if __name__ == '__main__':
    unittest.main()
