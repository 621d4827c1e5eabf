import pytest

import jsbc


def run(source: str) -> str:
    return jsbc.execute(jsbc.compile(source, "lang.js", script=True))


@pytest.mark.parametrize(
    "source,expected",
    [
        ("1 + 2 * 3;", "7"),
        ("(1 + 2) * 3;", "9"),
        ("7 % 3 + 2 ** 10;", "1025"),
        ("0.1 + 0.2;", "0.30000000000000004"),
        ("1 / 3;", "0.3333333333333333"),
        ("1 / 0;", "Infinity"),
        ("0 / 0;", "NaN"),
        ("1e21;", "1e+21"),
        ("-0;", "0"),
        ("0x10 + 0o10 + 0b10;", "26"),
        ("1e3 + 0.5;", "1000.5"),
        ("'a' + 1 + 2;", "a12"),
        ("1 + 2 + 'a';", "3a"),
        ("'3' * '4';", "12"),
        ("5 & 3 | 8 ^ 1;", "9"),
        ("-1 >>> 28;", "15"),
        ("1 << 31;", "-2147483648"),
        ("~5;", "-6"),
        ("!0 + ',' + !'x';", "true,false"),
        ("void 0;", "undefined"),
        ("1, 2, 3;", "3"),
    ],
)
def test_expressions(source, expected):
    assert run(source) == expected


@pytest.mark.parametrize(
    "source,expected",
    [
        ("1 == '1';", "true"),
        ("1 === '1';", "false"),
        ("null == undefined;", "true"),
        ("null === undefined;", "false"),
        ("NaN == NaN;", "false"),
        ("'b' > 'a';", "true"),
        ("2 < '10';", "true"),
        ("'2' < '10';", "false"),
        ("null ?? 'd';", "d"),
        ("0 ?? 'd';", "0"),
        ("0 || 'x';", "x"),
        ("1 && 'y';", "y"),
        ("true ? 'yes' : 'no';", "yes"),
    ],
)
def test_comparisons_and_logic(source, expected):
    assert run(source) == expected


def test_typeof():
    source = ("typeof undeclared + ',' + typeof 1 + ',' + typeof 'a' + ',' + typeof null"
              " + ',' + typeof function () {} + ',' + typeof 1n + ',' + typeof {};")
    assert run(source) == "undefined,number,string,object,function,bigint,object"


def test_undeclared_variable():
    assert run("missing;").startswith("ERROR: Runtime exception: 'missing' is not defined")


def test_global_var_and_compound_assignment():
    assert run("var x = 10; x += 5; x *= 2; x;") == "30"
    assert run("y = 3; globalThis.y;") == "3"


def test_recursion():
    source = "function fact(n) { return n <= 1 ? 1 : n * fact(n - 1); } fact(10);"
    assert run(source) == "3628800"


def test_closures_share_state():
    source = """
    function counter() {
        var n = 0;
        return function () { n += 1; return n; };
    }
    var c = counter();
    c(); c();
    c();
    """
    assert run(source) == "3"


def test_let_loop_binding_per_iteration():
    source = """
    var fs = [];
    for (let i = 0; i < 3; i++) {
        fs.push(function () { return i; });
    }
    fs[0]() + ',' + fs[1]() + ',' + fs[2]();
    """
    assert run(source) == "0,1,2"


def test_var_loop_binding_is_shared():
    source = """
    var fs = [];
    for (var i = 0; i < 3; i++) {
        fs.push(function () { return i; });
    }
    fs[0]() + fs[1]();
    """
    assert run(source) == "6"


def test_block_scoped_let_shadows():
    assert run("let a = 1; { let a = 2; } a;") == "1"


def test_temporal_dead_zone():
    source = """
    var before = (function () {
        try { return y; } catch (e) { return e.name; }
    })();
    let y = 1;
    before;
    """
    assert run(source) == "ReferenceError"


def test_const_assignment_throws():
    assert run("const k = 1; try { k = 2; } catch (e) { e.name + ': ' + e.message; }") == \
        "TypeError: 'k' is read-only"


def test_try_catch():
    source = "var r; try { throw new TypeError('bad'); } catch (e) { r = e.name + ':' + e.message; } r;"
    assert run(source) == "TypeError:bad"


def test_finally_runs_before_return():
    source = """
    var log = [];
    function f() {
        try { log.push('t'); return 'r'; }
        finally { log.push('f'); }
    }
    log.push(f());
    log.join(',');
    """
    assert run(source) == "t,f,r"


def test_finally_after_catch_and_rethrow():
    source = """
    var log = [];
    function f() {
        try {
            try { throw new Error('inner'); }
            catch (e) { log.push('c:' + e.message); throw new RangeError('outer'); }
            finally { log.push('f'); }
        } catch (e2) {
            log.push(e2.name);
        }
    }
    f();
    log.join(' ');
    """
    assert run(source) == "c:inner f RangeError"


def test_break_out_of_try_finally_in_loop():
    source = """
    var log = [];
    for (var i = 0; i < 5; i++) {
        try {
            if (i == 2) break;
            log.push(i);
        } finally {
            log.push('f' + i);
        }
    }
    log.join(',');
    """
    assert run(source) == "0,f0,1,f1,f2"


def test_labeled_break_and_continue():
    source = """
    var n = 0;
    outer: for (var i = 0; i < 5; i++) {
        for (var j = 0; j < 5; j++) {
            if (j == 2) continue outer;
            if (i == 3) break outer;
            n++;
        }
    }
    n;
    """
    assert run(source) == "6"


def test_while_and_do_while():
    assert run("var i = 0, s = 0; while (i < 5) { s += i; i++; } s;") == "10"
    assert run("var i = 10, n = 0; do { n++; } while (i < 5); n;") == "1"


def test_switch():
    source = """
    function s(x) {
        switch (x) {
            case 1: return 'one';
            case 2:
            case 3: return 'few';
            default: return 'many';
        }
    }
    [s(1), s(3), s(9)].join(' ');
    """
    assert run(source) == "one few many"


def test_switch_fallthrough_and_break():
    source = """
    var out = '';
    switch (2) {
        case 1: out += 'a';
        case 2: out += 'b';
        case 3: out += 'c'; break;
        case 4: out += 'd';
    }
    out;
    """
    assert run(source) == "bc"


def test_objects_and_arrays():
    assert run("var o = {a: 1, b: {c: 2}}; o.b.c + o['a'];") == "3"
    assert run("var a = [1, 2, 3]; a.push(4); a.length + ':' + a.join('-');") == "4:1-2-3-4"
    assert run("var o = {a: 1}; delete o.a; 'a' in o;") == "false"
    assert run("var k = 'dyn'; var o = {[k + 1]: 5}; o.dyn1;") == "5"
    assert run("Object.keys({x: 1, y: 2}).join();") == "x,y"
    assert run("Array.isArray([]) + ',' + Array.isArray({});") == "true,false"
    assert run("[3, 1, 2].indexOf(2);") == "2"


def test_update_expressions():
    source = "var o = {n: 1}; var old = o.n++; old + ',' + o.n + ',' + (++o.n);"
    assert run(source) == "1,2,3"
    assert run("var a = [5]; a[0]--; a[0];") == "4"


def test_methods_and_this():
    assert run("var o = {v: 41, get: function () { return this.v + 1; }}; o.get();") == "42"
    assert run("var o = {v: 2, twice() { return this.v * 2; }}; o.twice();") == "4"


def test_arrow_functions_capture_this():
    source = "var o = {v: 7, f: function () { return [1, 2].map(x => x * this.v).join(','); }}; o.f();"
    assert run(source) == "7,14"


def test_constructors_and_prototypes():
    source = """
    function P(x) { this.x = x; }
    P.prototype.double = function () { return this.x * 2; };
    var p = new P(21);
    p.double() + ',' + (p instanceof P) + ',' + (p instanceof Object);
    """
    assert run(source) == "42,true,true"


def test_default_parameters_and_length():
    assert run("function f(a, b = 2) { return a + b; } f(1) + f(1, 5) + f.length;") == "10"


def test_named_function_expression_binds_its_name():
    assert run("var f = function g(n) { return n ? n + g(n - 1) : 0; }; f(4);") == "10"


def test_function_to_string():
    assert run("function add(a, b) { return a + b; } add.toString();") == \
        "function add(a, b) { return a + b; }"


def test_error_objects():
    assert run("'' + new RangeError('r');") == "RangeError: r"
    assert run("var e = new Error('m'); e instanceof Error;") == "true"
    assert run("new TypeError('t') instanceof Error;") == "true"


def test_builtins():
    assert run("Math.max(3, 7, 5) + Math.floor(2.7);") == "9"
    assert run("'Hello'.toUpperCase() + 'abc'.charAt(1) + 'a,b'.split(',').length;") == "HELLOb2"
    assert run("parseInt('42px') + parseFloat('0.5');") == "42.5"
    assert run("(255).toString(16);") == "ff"
    assert run("String(12) + Number('3');") == "123"


def test_bigint_arithmetic():
    assert run("(2n ** 64n).toString();") == "18446744073709551616"
    assert run("10n / 3n;") == "3"
    assert run("-7n % 3n;") == "-1"
    assert run("1n + 1;").startswith("ERROR: Runtime exception: cannot mix BigInt")


def test_completion_value_of_declarations():
    assert run("var a = 1;") == "undefined"
    assert run("1; var a = 2;") == "1"
