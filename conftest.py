pytest_plugins = ["httpmock.pytest_plugin"]
