"""phabtree - show a Phabricator task and its subtask tree."""
