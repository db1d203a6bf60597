pytest_plugins = ["tests.fixtures.deploy_fixtures"]
