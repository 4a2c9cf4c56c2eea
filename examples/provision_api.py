from provisor import LoggingHook, Provisioner, SqliteData, parse_spec

# Minimal, runnable everywhere example of the Python API

data = SqliteData(in_memory=True)  # in-memory DB avoids file persistence during local dev

spec = parse_spec(
    {
        "name": "hello",
        "steps": [
            {"env": {"GREETING": "hello"}},
            {"id": "say", "run": "echo $GREETING world"},
            {"run": ["uname", "-a"], "best_effort": True},
            {"shell": "/bin/sh"},
        ],
        "checks": {"env": ["GREETING"], "tools": ["sh"], "shell": True},
    }
)

provisioner = Provisioner(spec, data=data, hook=LoggingHook())

if __name__ == "__main__":
    import logging

    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    result = provisioner.provision()
    print(result["status"], result["steps"]["say"]["stdout"])
    print(result["environment"])
