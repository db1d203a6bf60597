from webdeploy.backup import BackupManager, clear_directory, copy_tree_contents
from tests.fixtures.deploy_fixtures import write_tree


def test_create_backup_copies_current_site(workspace, existing_site):
    manager = BackupManager(existing_site, workspace / "public_html_backup")

    assert manager.create_backup() is True
    assert (workspace / "public_html_backup" / "index.html").read_text() == "<html>old</html>"
    assert (workspace / "public_html_backup" / ".htaccess").exists()


def test_no_backup_for_missing_or_empty_site(workspace):
    manager = BackupManager(workspace / "public_html", workspace / "public_html_backup")
    assert manager.create_backup() is False

    (workspace / "public_html").mkdir()
    assert manager.create_backup() is False
    assert not manager.has_backup()


def test_remove_old_backup(workspace):
    write_tree(workspace / "public_html_backup", {"stale.html": "stale"})
    manager = BackupManager(workspace / "public_html", workspace / "public_html_backup")

    assert manager.remove_old_backup() is True
    assert not manager.has_backup()
    assert manager.remove_old_backup() is False


def test_restore_replaces_contents_including_dotfiles(workspace, existing_site):
    manager = BackupManager(existing_site, workspace / "public_html_backup")
    manager.create_backup()

    clear_directory(existing_site)
    write_tree(existing_site, {"index.html": "broken", ".env.local": "secret", "new/x.js": "x"})

    assert manager.restore() is True
    assert sorted(p.name for p in existing_site.iterdir()) == [".htaccess", "index.html", "old-page.html"]
    assert (existing_site / "index.html").read_text() == "<html>old</html>"


def test_restore_without_backup(workspace, existing_site):
    manager = BackupManager(existing_site, workspace / "public_html_backup")

    assert manager.restore() is False
    assert (existing_site / "index.html").exists()


def test_copy_tree_contents_overwrites(tmp_path):
    src = write_tree(tmp_path / "src", {"a.txt": "new", ".hidden": "h", "dir/b.txt": "b"})
    dst = write_tree(tmp_path / "dst", {"a.txt": "old", "dir/c.txt": "c"})

    copied = copy_tree_contents(src, dst)

    assert copied == 3
    assert (dst / "a.txt").read_text() == "new"
    assert (dst / ".hidden").exists()
    assert (dst / "dir" / "b.txt").exists()
    assert (dst / "dir" / "c.txt").exists()


def test_describe(workspace, existing_site):
    manager = BackupManager(existing_site, workspace / "public_html_backup")
    assert manager.describe()["exists"] is False

    manager.create_backup()
    summary = manager.describe()
    assert summary["exists"] is True
    assert summary["entries"] == 3
