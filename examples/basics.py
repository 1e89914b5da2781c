import ast

from reactivex.subject import BehaviorSubject, Subject

from atflow import Context, Flatten, Observe, lower_module, render_diagnostics, run_module


def load(identifier):
    return ast.Name(id=identifier, ctx=ast.Load())


def assign(identifier, value):
    return ast.Assign(targets=[ast.Name(id=identifier, ctx=ast.Store())], value=value)


def module(*statements):
    return ast.fix_missing_locations(ast.Module(body=list(statements), type_ignores=[]))


# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Lowering a context")
print("-" * 100)
print()

# total = context(@price * @quantity)
tree = module(
    assign(
        "total",
        Context(ast.BinOp(left=Flatten(load("price")), op=ast.Mult(), right=Flatten(load("quantity")))),
    )
)

# The lowered module only uses the runtime vocabulary.
print(ast.unparse(lower_module(tree).module))

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Running it against real streams")
print("-" * 100)
print()

price = BehaviorSubject(10)
quantity = Subject()
namespace = run_module(tree, {"price": price, "quantity": quantity})

subscription = namespace["total"].subscribe(lambda value: print(f"Total: {value}"))
quantity.on_next(2)  # Total: 20
price.on_next(12)  # Total: 24

# Disposing the pipeline unsubscribes from both sources.
subscription.dispose()
price.on_next(99)  # Nothing printed

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Observation blocks")
print("-" * 100)
print()

# with observe() as handle: print("Latest:", @latest)
latest = Subject()
observer = module(
    Observe(
        [ast.Expr(ast.Call(func=load("print"), args=[ast.Constant("Latest:"), Flatten(load("latest"))], keywords=[]))],
        target="handle",
    )
)
namespace = run_module(observer, {"latest": latest})

latest.on_next("first")
latest.on_next("second")
namespace["handle"].dispose()
latest.on_next("third")  # Nothing printed

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Static errors")
print("-" * 100)
print()

# broken = @price + 1   (no enclosing context)
broken = module(assign("broken", ast.BinOp(left=Flatten(load("price")), op=ast.Add(), right=ast.Constant(1))))
render_diagnostics(lower_module(broken).diagnostics)
