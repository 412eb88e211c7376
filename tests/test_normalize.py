import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

from errors import ProcessorFatalError
from normalize.models import Changelog, ChangelogEntry, CommitRecord, IssueReference, ProcessorConfig
from normalize.util import expand_env, normalize_commit, normalize_issue, parse_prefixes


def _commit(msg='msg', sha='a' * 40):
    return CommitRecord(hash=sha, author='Alice <alice@example.com>', timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc), message=msg)


class TestParsePrefixes(unittest.TestCase):
    def test_comma_and_space_delimiters(self):
        self.assertEqual(parse_prefixes("ABC,XYZ"), ['ABC', 'XYZ'])
        self.assertEqual(parse_prefixes(" ABC, XYZ "), ['ABC', 'XYZ'])
        self.assertEqual(parse_prefixes("ABC XYZ\tQA"), ['ABC', 'XYZ', 'QA'])
        self.assertEqual(parse_prefixes("ABC,,XYZ,"), ['ABC', 'XYZ'])

    def test_dedup_keeps_order(self):
        self.assertEqual(parse_prefixes("XYZ,ABC,XYZ"), ['XYZ', 'ABC'])

    def test_empty(self):
        self.assertEqual(parse_prefixes(None), [])
        self.assertEqual(parse_prefixes("  , "), [])


class TestExpandEnv(unittest.TestCase):
    def test_both_placeholder_forms(self):
        env = {'JIRA': 'https://issues.example.com', 'P': 'ABC'}
        self.assertEqual(expand_env("${JIRA}/x", env), "https://issues.example.com/x")
        self.assertEqual(expand_env("$P,XYZ", env), "ABC,XYZ")

    def test_unknown_left_alone(self):
        self.assertEqual(expand_env("$NOPE-${ALSO_NOPE}", {}), "$NOPE-${ALSO_NOPE}")

    def test_none_passthrough(self):
        self.assertIsNone(expand_env(None, {}))


class TestNormalizeHelpers(unittest.TestCase):
    def test_normalize_commit(self):
        ts = datetime(2024, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        raw = SimpleNamespace(hexsha='f' * 40, author=SimpleNamespace(name='Bob', email='bob@example.com'), committed_datetime=ts, message="subject\n\nbody\n")
        rec = normalize_commit(raw)
        self.assertEqual(rec.hash, 'f' * 40)
        self.assertEqual(rec.author, 'Bob <bob@example.com>')
        self.assertEqual(rec.timestamp, ts)
        self.assertEqual(rec.message, "subject\n\nbody")
        self.assertEqual(rec.subject, "subject")
        self.assertEqual(rec.short_hash, 'fffffff')

    def test_normalize_issue(self):
        self.assertEqual(normalize_issue({'key': 'ABC-1', 'fields': {'summary': ' Crash on save '}}), 'Crash on save')
        self.assertIsNone(normalize_issue({'fields': {}}))
        self.assertIsNone(normalize_issue({'fields': {'summary': 42}}))
        self.assertIsNone(normalize_issue(['not', 'a', 'dict']))
        self.assertIsNone(normalize_issue({'fields': 'nope'}))


class TestModels(unittest.TestCase):
    def test_processor_config_from_strings(self):
        cfg = ProcessorConfig.from_strings(" https://issues.example.com/ ", "ABC, XYZ")
        self.assertEqual(cfg.jira_base_url, "https://issues.example.com")
        self.assertEqual(cfg.project_prefixes, ('ABC', 'XYZ'))
        self.assertTrue(cfg.enabled)
        self.assertEqual(cfg.browse_url('ABC-1'), "https://issues.example.com/browse/ABC-1")

    def test_processor_config_disabled(self):
        self.assertFalse(ProcessorConfig.from_strings("", "ABC").enabled)
        self.assertFalse(ProcessorConfig.from_strings("https://x", "").enabled)
        self.assertFalse(ProcessorConfig.from_strings(None, None).enabled)

    def test_commit_record_is_immutable(self):
        rec = _commit()
        with self.assertRaises(AttributeError):
            rec.message = 'changed'

    def test_issue_reference_equality_by_value(self):
        a = IssueReference('ABC-1', 'u', 't', True)
        self.assertEqual(a, IssueReference('ABC-1', 'u', 't', True))

    def test_entry_annotations_read_only_view(self):
        entry = ChangelogEntry(_commit())
        entry.annotate('k', 1)
        with self.assertRaises(TypeError):
            entry.annotations['k'] = 2
        self.assertEqual(entry.get('k'), 1)

    def test_only_owner_replaces_annotation(self):
        entry = ChangelogEntry(_commit())
        entry.annotate('jira-issues', ('a',), owner='jira-filter')
        entry.annotate('jira-issues', ('b',), owner='jira-filter')
        self.assertEqual(entry.get('jira-issues'), ('b',))
        with self.assertRaises(ProcessorFatalError):
            entry.annotate('jira-issues', (), owner='other')
        with self.assertRaises(ProcessorFatalError):
            entry.annotate('jira-issues', ())
        self.assertEqual(entry.get('jira-issues'), ('b',))

    def test_initial_annotations_cannot_be_taken_over(self):
        entry = ChangelogEntry(_commit(), annotations={'k': 1})
        with self.assertRaises(ProcessorFatalError):
            entry.annotate('k', 2, owner='jira-filter')
        entry.annotate('k', 3)
        self.assertEqual(entry.get('k'), 3)

    def test_freeze_blocks_annotation_and_append(self):
        cl = Changelog([ChangelogEntry(_commit())])
        cl.freeze()
        self.assertTrue(cl.frozen)
        self.assertTrue(cl[0].frozen)
        with self.assertRaises(ProcessorFatalError):
            cl[0].annotate('k', 1)
        with self.assertRaises(ProcessorFatalError):
            cl.append(ChangelogEntry(_commit()))

    def test_changelog_preserves_insertion_order(self):
        commits = [_commit(sha=c * 40) for c in 'abc']
        cl = Changelog.from_commits(commits, from_rev='v1', to_rev='v2')
        self.assertEqual([e.commit.hash[0] for e in cl], ['a', 'b', 'c'])
        self.assertEqual(len(cl), 3)
        self.assertEqual(cl.from_rev, 'v1')


if __name__ == '__main__':
    unittest.main()
