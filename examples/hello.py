"""flowspec — minimal hello-world example.

The same two-step graph, once in code and once as a description.

Run:
    python examples/hello.py
"""

from flowspec import Compiler, Flow, Node, Store


class GreetNode(Node):
    def prep(self, store):
        return store["name"]

    def exec(self, name):
        return f"Hello, {name}!"

    def post(self, store, prep, greeting):
        store["greeting"] = greeting
        return "done"


class ShoutNode(Node):
    def prep(self, store):
        return store["greeting"]

    def exec(self, greeting):
        return greeting.upper()

    def post(self, store, prep, shouted):
        store["shouted"] = shouted


HELLO = {
    "version": "pf-js/1.0",
    "entry": "greet",
    "globals": {},
    "nodes": [
        {
            "id": "greet",
            "kind": "static-data",
            "exec": {"template": "Hello"},
            "post": {
                "outputs": {"save": [{"path": "greeting", "value": "{{result.template}}, {{ctx.name}}!"}]},
                "next": "shout",
            },
        },
        {
            "id": "shout",
            "kind": "static-data",
            "post": {"outputs": {"save": [{"path": "shouted", "value": "{{ ctx.greeting.toUpperCase() }}"}]}},
        },
    ],
    "edges": [{"from": "greet", "to": "shout", "label": "shout"}],
}


if __name__ == "__main__":
    greet = GreetNode()
    greet.then("done", ShoutNode())

    store = Store(data={"name": "flowspec"}, schema={"name": str}, name="hello_demo")
    store.validate()

    flow = Flow(start=greet)
    flow.on("node_end", lambda name, action, elapsed, s:
        print(f"  ✓ {name} → '{action}'  ({elapsed*1000:.1f}ms)"))

    print("Running hello flow (code)...")
    flow.run(store)
    print(f"greeting : {store['greeting']}")
    print(f"shouted  : {store['shouted']}")

    print("Running hello flow (description)...")
    compiled = Compiler().compile(HELLO)
    compiled.flow.on("node_end", lambda name, action, elapsed, s:
        print(f"  ✓ {name} → '{action}'  ({elapsed*1000:.1f}ms)"))
    shared = {"name": "flowspec"}
    compiled.run(shared)
    print(f"greeting : {shared['greeting']}")
    print(f"shouted  : {shared['shouted']}")
